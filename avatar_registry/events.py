"""
Change notifications emitted by the registry.

One MetadataDigestUpdated is produced per successful digest write. Listeners
receive notifications only after the write has committed; a batch delivers its
notifications in input order.
"""

import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .types import Digest, Identity, digest_hex, identity_hex


@dataclass(frozen=True)
class MetadataDigestUpdated:
    """Notification that identity's digest is now digest."""
    identity: Identity
    digest: Digest

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "MetadataDigestUpdated",
            "identity": identity_hex(self.identity),
            "digest": digest_hex(self.digest),
        }


Listener = Callable[[MetadataDigestUpdated], None]


class InMemoryEventLog:
    """
    Listener that keeps every notification it receives.

    WARNING: Not persistent. The SQLite store keeps its own hash-chained
    event log for deployments.
    """

    def __init__(self, max_records: int = 10000):
        self._records: List[MetadataDigestUpdated] = []
        self._lock = threading.Lock()
        self._max_records = max_records

    def __call__(self, event: MetadataDigestUpdated) -> None:
        with self._lock:
            self._records.append(event)
            if len(self._records) > self._max_records:
                self._records = self._records[-self._max_records:]

    def query(self, identity: Optional[Identity] = None) -> List[MetadataDigestUpdated]:
        with self._lock:
            records = self._records[:]
        if identity is not None:
            records = [r for r in records if r.identity == identity]
        return records

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
