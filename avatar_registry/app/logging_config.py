"""
Logging configuration for the Avatar Registry service.

Provides structured JSON logging for audit trails and debugging.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import List, Optional

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in a consistent JSON format suitable for
    log aggregation systems like ELK, Splunk, or CloudWatch.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data)


class AuditLogger:
    """
    Specialized logger for registry audit events.

    One method per event type: digest writes, rejected writes,
    seeder renunciation, caller proof failures and rate limiting.
    """

    def __init__(self, name: str = "avatar_registry.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        extra = {
            "event_type": event_type,
            "request_id": request_id_var.get(),
            **kwargs
        }

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def digest_updated(self, identity: str, digest: str) -> None:
        self._log(
            logging.INFO,
            "DIGEST_UPDATED",
            identity=identity,
            digest=digest,
            message=f"Digest updated for {identity}"
        )

    def batch_updated(self, seeder: str, identities: List[str]) -> None:
        self._log(
            logging.INFO,
            "BATCH_UPDATED",
            seeder=seeder,
            identities=identities,
            count=len(identities),
            message=f"Seeder {seeder} updated {len(identities)} digests"
        )

    def write_rejected(
        self,
        operation: str,
        caller: str,
        code: str,
        reason: Optional[str] = None
    ) -> None:
        """Log a write the registry refused."""
        self._log(
            logging.WARNING,
            "WRITE_REJECTED",
            operation=operation,
            caller=caller,
            code=code,
            reason=reason,
            message=f"{operation} rejected for {caller}: {code}"
        )

    def seeder_renounced(self, seeder: str) -> None:
        self._log(
            logging.WARNING,
            "SEEDER_RENOUNCED",
            seeder=seeder,
            message=f"Seeder {seeder} renounced; batch updates are closed"
        )

    def caller_proof_rejected(self, endpoint: str, reason: str, claimed_caller: Optional[str] = None) -> None:
        self._log(
            logging.WARNING,
            "CALLER_PROOF_REJECTED",
            endpoint=endpoint,
            reason=reason,
            claimed_caller=claimed_caller,
            message=f"Caller proof rejected on {endpoint}: {reason}"
        )

    def rate_limit_exceeded(self, client_id: str, endpoint: str) -> None:
        self._log(
            logging.WARNING,
            "RATE_LIMIT_EXCEEDED",
            client_id=client_id,
            endpoint=endpoint,
            message=f"Rate limit exceeded for {client_id} on {endpoint}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set the request ID for the current context.

    Args:
        request_id: Request ID to set, or None to generate one

    Returns:
        The request ID that was set
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


# Global audit logger instance
audit_log = AuditLogger()
