"""
Avatar Registry caller proofs

Registry writes carry an implicit caller. Over the network the caller is
established with an Ed25519 (RFC 8032) signed proof bound to the exact
request body:

    proof = {
        "caller":    "0x<identity>",
        "issued_at": <epoch seconds>,
        "nonce":     "<random hex>",
        "sig_b64":   base64(Ed25519(CJE({caller, issued_at, nonce, request_hash})))
    }

where request_hash = SHA-256(CJE(body without "proof")).

The caller trust store maps identity -> base64 public key:

    {"trust_store_id": "...", "caller_keys": {"0x<identity>": "<b64 pubkey>"}}
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .types import Identity, identity_hex, to_identity
from .util import b64d, b64e, canonicalize, generate_nonce, now_epoch, sha256_hex


@dataclass
class CallerKey:
    """Ed25519 key pair bound to a registry identity."""
    identity: Identity
    signing_key: bytes

    @property
    def verify_key(self) -> bytes:
        return bytes(SigningKey(self.signing_key).verify_key)

    def to_trust_store_entry(self) -> Tuple[str, str]:
        return identity_hex(self.identity), b64e(self.verify_key)

    def to_dict(self) -> Dict[str, str]:
        return {
            "identity": identity_hex(self.identity),
            "private_key_b64": b64e(self.signing_key),
        }

    @classmethod
    def generate(cls, identity) -> 'CallerKey':
        return cls(identity=to_identity(identity), signing_key=bytes(SigningKey.generate()))

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> 'CallerKey':
        return cls(identity=to_identity(data["identity"]), signing_key=b64d(data["private_key_b64"]))


def request_hash(body: Dict[str, Any]) -> str:
    """Hash of a request body, excluding any proof it carries."""
    unsigned = {k: v for k, v in body.items() if k != "proof"}
    return sha256_hex(canonicalize(unsigned))


def _proof_payload(caller: str, issued_at: int, nonce: str, req_hash: str) -> bytes:
    return canonicalize({
        "caller": caller,
        "issued_at": issued_at,
        "nonce": nonce,
        "request_hash": req_hash,
    })


def sign_request(
    body: Dict[str, Any],
    key: CallerKey,
    issued_at: Optional[int] = None,
    nonce: Optional[str] = None
) -> Dict[str, Any]:
    """
    Return a copy of body with a caller proof attached.

    Args:
        body: The request body (any existing "proof" is replaced)
        key: The caller's key pair
        issued_at: Override the issue time (defaults to now)
        nonce: Override the nonce (defaults to random)
    """
    caller = identity_hex(key.identity)
    issued_at = now_epoch() if issued_at is None else issued_at
    nonce = nonce or generate_nonce()
    payload = _proof_payload(caller, issued_at, nonce, request_hash(body))
    sig = SigningKey(key.signing_key).sign(payload).signature

    signed = {k: v for k, v in body.items() if k != "proof"}
    signed["proof"] = {
        "caller": caller,
        "issued_at": issued_at,
        "nonce": nonce,
        "sig_b64": b64e(sig),
    }
    return signed


def verify_ed25519(sig_b64: str, payload: bytes, pub_b64: str) -> bool:
    try:
        VerifyKey(b64d(pub_b64)).verify(payload, b64d(sig_b64))
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False


def verify_caller_proof(
    body: Dict[str, Any],
    trust_store: Dict[str, Any],
    now_epoch_s: int,
    freshness: int,
    max_skew: int
) -> Optional[Identity]:
    """
    Verify the proof attached to body.

    Args:
        body: The full request body including "proof"
        trust_store: Caller trust store containing caller_keys
        now_epoch_s: Current Unix timestamp
        freshness: Maximum age of a proof in seconds
        max_skew: Maximum clock skew allowance in seconds

    Returns:
        The authenticated caller identity, or None if the proof is invalid
    """
    proof = body.get("proof")
    if not isinstance(proof, dict):
        return None

    caller = proof.get("caller")
    if not isinstance(caller, str):
        return None
    try:
        identity = to_identity(caller)
    except ValueError:
        return None
    caller = identity_hex(identity)

    pub = trust_store.get("caller_keys", {}).get(caller)
    if not pub:
        return None

    try:
        issued_at = int(proof.get("issued_at", 0))
    except (TypeError, ValueError):
        return None
    if issued_at <= 0:
        return None

    # Too old, or too far in the future
    if (now_epoch_s - issued_at) > (freshness + max_skew):
        return None
    if (issued_at - now_epoch_s) > max_skew:
        return None

    nonce = proof.get("nonce")
    if not isinstance(nonce, str) or not nonce:
        return None

    payload = _proof_payload(caller, issued_at, nonce, request_hash(body))
    if not verify_ed25519(proof.get("sig_b64", ""), payload, pub):
        return None
    return identity
