"""
Membership oracle adapters.

The registry never decides membership itself. It holds a reference to a
MembershipOracle and asks it two questions about an identity:

    token_of(identity)        -> the identity's personal token, or None
    is_organization(identity) -> whether the identity is a registered organization

An identity is a recognized member when it has a token OR is an organization.
The token question is always asked first; the organization question is only
asked when the token answer is negative.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional

import requests

from .errors import OracleUnavailable
from .types import ZERO_IDENTITY, Identity, identity_hex, to_identity

logger = logging.getLogger(__name__)


class MembershipOracle(ABC):
    """Abstract interface to the external membership authority."""

    @abstractmethod
    def token_of(self, identity: Identity) -> Optional[Identity]:
        """Return the personal token bound to identity, or None."""
        pass

    @abstractmethod
    def is_organization(self, identity: Identity) -> bool:
        """Return True if identity is a registered organization."""
        pass


def is_recognized_member(oracle: MembershipOracle, identity: Identity) -> bool:
    """
    Decide whether an identity may hold a registry entry.

    A zero-address token is treated the same as no token.
    """
    token = oracle.token_of(identity)
    if token is not None and token != ZERO_IDENTITY:
        return True
    return bool(oracle.is_organization(identity))


class StaticMembershipOracle(MembershipOracle):
    """
    In-memory membership snapshot.

    Loadable from a JSON snapshot of the form:

        {
            "tokens": {"0x<identity>": "0x<token>", ...},
            "organizations": ["0x<identity>", ...]
        }
    """

    def __init__(
        self,
        tokens: Optional[Dict[Identity, Identity]] = None,
        organizations: Optional[Iterable[Identity]] = None
    ):
        self._tokens: Dict[Identity, Identity] = dict(tokens or {})
        self._organizations = set(organizations or [])
        self._lock = threading.Lock()

    def token_of(self, identity: Identity) -> Optional[Identity]:
        with self._lock:
            return self._tokens.get(identity)

    def is_organization(self, identity: Identity) -> bool:
        with self._lock:
            return identity in self._organizations

    def set_token(self, identity: Identity, token: Identity) -> None:
        with self._lock:
            self._tokens[identity] = token

    def remove_token(self, identity: Identity) -> None:
        with self._lock:
            self._tokens.pop(identity, None)

    def add_organization(self, identity: Identity) -> None:
        with self._lock:
            self._organizations.add(identity)

    def remove_organization(self, identity: Identity) -> None:
        with self._lock:
            self._organizations.discard(identity)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StaticMembershipOracle':
        """Create an oracle from a snapshot dictionary."""
        tokens = {
            to_identity(who): to_identity(token)
            for who, token in data.get("tokens", {}).items()
        }
        organizations = [to_identity(o) for o in data.get("organizations", [])]
        return cls(tokens=tokens, organizations=organizations)

    @classmethod
    def from_file(cls, path: str) -> 'StaticMembershipOracle':
        """Create an oracle from a JSON snapshot file."""
        with open(path, "r", encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


class OpenMembershipOracle(MembershipOracle):
    """Recognizes every identity as a member. For deployments without authority checks."""

    def token_of(self, identity: Identity) -> Optional[Identity]:
        return identity

    def is_organization(self, identity: Identity) -> bool:
        return False


class HttpMembershipOracle(MembershipOracle):
    """
    Membership oracle backed by a remote HTTP service.

    Endpoints:
        GET {base_url}/token_of/{identity}        -> {"token": "0x..." | null}
        GET {base_url}/is_organization/{identity} -> {"is_organization": bool}

    Any transport or protocol failure raises OracleUnavailable so the
    enclosing write is rejected (fail closed).
    """

    def __init__(self, base_url: str, timeout: float = 3.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def _get(self, path: str, identity: Identity) -> Dict[str, Any]:
        url = f"{self.base_url}/{path}/{identity_hex(identity)}"
        try:
            r = self._session.get(url, timeout=self.timeout)
            r.raise_for_status()
            body = r.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("membership oracle request failed: %s (%s)", url, e)
            raise OracleUnavailable(f"membership oracle request failed: {e}", identity) from e
        if not isinstance(body, dict):
            logger.warning("membership oracle returned a non-object body: %s", url)
            raise OracleUnavailable(f"malformed response from oracle: {body!r}", identity)
        return body

    def token_of(self, identity: Identity) -> Optional[Identity]:
        body = self._get("token_of", identity)
        token = body.get("token")
        if not token:
            return None
        try:
            return to_identity(token)
        except ValueError as e:
            raise OracleUnavailable(f"malformed token from oracle: {token!r}", identity) from e

    def is_organization(self, identity: Identity) -> bool:
        body = self._get("is_organization", identity)
        value = body.get("is_organization")
        if not isinstance(value, bool):
            raise OracleUnavailable(f"malformed is_organization from oracle: {value!r}", identity)
        return value
