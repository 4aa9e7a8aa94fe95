
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request

from ..encoding import cid_or_none
from ..errors import InvalidMember, LengthMismatch, OracleUnavailable, RegistryError, UnauthorizedSeeder
from ..events import MetadataDigestUpdated
from ..membership import HttpMembershipOracle, MembershipOracle, OpenMembershipOracle, StaticMembershipOracle
from ..registry import AvatarRegistry
from ..signing import verify_caller_proof
from ..types import Identity, digest_hex, identity_hex
from ..util import now_epoch
from . import config
from .db import SqliteRegistryStore, event_log_proof, export_event_log, get_db_stats, insert_nonce, verify_event_chain
from .logging_config import audit_log, configure_logging, get_request_id, set_request_id
from .models import (
    BatchUpdateRequest,
    DigestResponse,
    RenounceSeederRequest,
    SeederResponse,
    SelfUpdateRequest,
)
from .rate_limit import RateLimiter
from .security import ValidationError, extract_client_id, validate_digest, validate_identity

logger = logging.getLogger(__name__)

app = FastAPI(title="Avatar Registry")

STATUS_BY_CODE = {
    InvalidMember.code: 403,
    UnauthorizedSeeder.code: 403,
    LengthMismatch.code: 400,
    OracleUnavailable.code: 503,
}

self_update_limiter = RateLimiter(config.SELF_UPDATE_RPM)
seeder_limiter = RateLimiter(config.SEEDER_RPM)
REGISTRY: Optional[AvatarRegistry] = None


def get_membership_oracle() -> MembershipOracle:
    kind = config.MEMBERSHIP_ORACLE
    if kind == "http":
        return HttpMembershipOracle(config.MEMBERSHIP_ORACLE_URL, timeout=config.MEMBERSHIP_ORACLE_TIMEOUT)
    if kind == "open":
        return OpenMembershipOracle()
    return StaticMembershipOracle.from_file(config.MEMBERSHIP_SNAPSHOT_PATH)


def _audit_digest_event(event: MetadataDigestUpdated) -> None:
    audit_log.digest_updated(identity_hex(event.identity), digest_hex(event.digest))


def build_registry(oracle: Optional[MembershipOracle] = None) -> AvatarRegistry:
    registry = AvatarRegistry(
        oracle or get_membership_oracle(),
        seeder=config.INITIAL_SEEDER or None,
        store=SqliteRegistryStore(),
    )
    registry.subscribe(_audit_digest_event)
    return registry


@app.on_event("startup")
def _startup():
    global REGISTRY
    configure_logging(config.LOG_LEVEL, json_format=config.LOG_JSON, log_file=config.LOG_FILE)
    if config.is_production() and config.MEMBERSHIP_ORACLE == "open":
        logger.warning("open membership oracle in production: every identity may self-update")
    REGISTRY = build_registry()
    logger.info("avatar registry started (env=%s, oracle=%s)", config.ENV, config.MEMBERSHIP_ORACLE)


@app.middleware("http")
async def _request_id(request: Request, call_next):
    set_request_id(request.headers.get("x-request-id"))
    response = await call_next(request)
    response.headers["x-request-id"] = get_request_id()
    return response


def _registry() -> AvatarRegistry:
    if REGISTRY is None:
        raise HTTPException(503, "NOT_READY")
    return REGISTRY


def _rate_limit(limiter: RateLimiter, request: Request, endpoint: str) -> None:
    client_id = extract_client_id(dict(request.headers))
    if not limiter.allow(f"{client_id}:{endpoint}"):
        audit_log.rate_limit_exceeded(client_id, endpoint)
        raise HTTPException(429, "RATE_LIMIT")


def _authenticate(endpoint: str, req) -> Identity:
    """Resolve the caller from the signed proof; single use per nonce."""
    # Hash only the fields the client sent; defaults filled in by the model
    # were not part of the signed body.
    caller = verify_caller_proof(
        req.model_dump(exclude_unset=True),
        config.load_caller_trust_store(),
        now_epoch(),
        config.PROOF_FRESHNESS_SECONDS,
        config.MAX_CLOCK_SKEW_SECONDS,
    )
    if caller is None:
        audit_log.caller_proof_rejected(endpoint, "INVALID_CALLER_PROOF", req.proof.caller)
        raise HTTPException(401, "INVALID_CALLER_PROOF")

    expires_at = req.proof.issued_at + config.PROOF_FRESHNESS_SECONDS + config.MAX_CLOCK_SKEW_SECONDS
    if not insert_nonce(req.proof.nonce, expires_at):
        audit_log.caller_proof_rejected(endpoint, "REPLAY", req.proof.caller)
        raise HTTPException(401, "REPLAY")
    return caller


def _reject(operation: str, caller: Identity, exc: RegistryError) -> HTTPException:
    audit_log.write_rejected(operation, identity_hex(caller), exc.code, exc.message)
    return HTTPException(STATUS_BY_CODE.get(exc.code, 400), exc.code)


@app.get("/avatars/{identity}/digest", response_model=DigestResponse)
def get_digest(identity: str):
    try:
        who = validate_identity(identity)
    except ValidationError as e:
        raise HTTPException(400, str(e))
    digest = _registry().get_digest(who)
    return DigestResponse(identity=identity_hex(who), digest=digest_hex(digest), cid=cid_or_none(digest))


@app.get("/seeder", response_model=SeederResponse)
def get_seeder():
    seeder = _registry().seeder
    return SeederResponse(seeder=identity_hex(seeder) if seeder is not None else None)


@app.post("/avatars/digest", response_model=DigestResponse)
def self_update(req: SelfUpdateRequest, request: Request):
    _rate_limit(self_update_limiter, request, "self_update")
    caller = _authenticate("self_update", req)
    try:
        digest = validate_digest(req.digest)
    except ValidationError as e:
        raise HTTPException(400, str(e))

    try:
        _registry().self_update(caller, digest)
    except RegistryError as e:
        raise _reject("self_update", caller, e)

    return DigestResponse(identity=identity_hex(caller), digest=digest_hex(digest), cid=cid_or_none(digest))


@app.post("/seeder/batch")
def batch_update(req: BatchUpdateRequest, request: Request):
    _rate_limit(seeder_limiter, request, "batch_update")
    caller = _authenticate("batch_update", req)

    # Identities and digests are decoded by the registry, after the seeder
    # and length checks.
    try:
        _registry().batch_update(caller, req.identities, req.digests)
    except RegistryError as e:
        raise _reject("batch_update", caller, e)
    except ValueError as e:
        raise HTTPException(400, str(e))

    audit_log.batch_updated(identity_hex(caller), [i.lower() for i in req.identities])
    return {"status": "UPDATED", "count": len(req.identities)}


@app.post("/seeder/renounce", response_model=SeederResponse)
def renounce_seeder(req: RenounceSeederRequest, request: Request):
    _rate_limit(seeder_limiter, request, "renounce_seeder")
    caller = _authenticate("renounce_seeder", req)
    try:
        _registry().renounce_seeder(caller)
    except RegistryError as e:
        raise _reject("renounce_seeder", caller, e)

    audit_log.seeder_renounced(identity_hex(caller))
    return SeederResponse(seeder=None)


@app.get("/events")
def events(identity: Optional[str] = None):
    if identity is not None:
        try:
            identity = identity_hex(validate_identity(identity))
        except ValidationError as e:
            raise HTTPException(400, str(e))
    return export_event_log(identity)


@app.get("/events/proof")
def events_proof():
    proof = event_log_proof()
    proof["chain_valid"] = verify_event_chain()
    return proof


@app.get("/health")
def health():
    return {
        "status": "ok" if REGISTRY is not None else "starting",
        "env": config.ENV,
        "config": config.validate_config(),
        "db": get_db_stats(),
        "rate_limit_keys": self_update_limiter.tracked_keys() + seeder_limiter.tracked_keys(),
    }
