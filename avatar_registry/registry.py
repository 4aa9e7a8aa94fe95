"""
Avatar Registry

Associates each identity ("avatar") with a single 32-byte metadata digest.

There are exactly two ways to write:

    self_update(caller, digest)
        Any identity the membership oracle recognizes may set its own digest.

    batch_update(caller, identities, digests)
        The seeder may set digests for many recognized identities at once.
        The batch is all-or-nothing.

The seeder can give up its privilege with renounce_seeder(). That transition
is one-way: once there is no seeder, batch writes are closed for good.

Every check runs before any mutation. A rejected call raises a RegistryError
and leaves the registry exactly as it was.
"""

import logging
import threading
from typing import List, Optional, Sequence, Union

from .errors import InvalidMember, LengthMismatch, UnauthorizedSeeder
from .events import Listener, MetadataDigestUpdated
from .membership import MembershipOracle, is_recognized_member
from .store import DigestWrite, InMemoryRegistryStore, RegistryStore
from .types import Digest, Identity, identity_hex, to_digest, to_identity

logger = logging.getLogger(__name__)


class AvatarRegistry:
    """
    The permissioned identity -> digest registry.

    Mutations are serialized by one lock. The membership oracle is consulted
    inside that lock, so its answers are consumed atomically with the write
    they authorize. The lock only covers this process; seeder-gated writes
    also hand the caller to the store, which re-checks the seeder slot in
    the same transaction as the write. Reads do not take the lock; the store guarantees they
    never observe a partially applied batch.

    Usage:
        registry = AvatarRegistry(oracle, seeder=seeder_identity)
        registry.subscribe(indexer.on_digest_updated)

        registry.self_update(caller, digest)
        registry.batch_update(seeder_identity, [a, b], [d1, d2])
        registry.renounce_seeder(seeder_identity)
    """

    def __init__(
        self,
        oracle: MembershipOracle,
        seeder: Optional[Union[bytes, str]],
        store: Optional[RegistryStore] = None,
        listeners: Optional[Sequence[Listener]] = None
    ):
        self._oracle = oracle
        self._store = store or InMemoryRegistryStore()
        self._store.initialize(to_identity(seeder) if seeder is not None else None)
        self._listeners: List[Listener] = list(listeners or [])
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def oracle(self) -> MembershipOracle:
        return self._oracle

    @property
    def seeder(self) -> Optional[Identity]:
        """The current seeder, or None once renounced."""
        return self._store.get_seeder()

    def get_digest(self, identity: Union[bytes, str]) -> Digest:
        """Return the digest for identity; the zero digest if never set."""
        return self._store.get_digest(to_identity(identity))

    def is_member(self, identity: Union[bytes, str]) -> bool:
        return is_recognized_member(self._oracle, to_identity(identity))

    def subscribe(self, listener: Listener) -> None:
        """Register a callable to receive MetadataDigestUpdated notifications."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def self_update(self, caller: Union[bytes, str], digest: Union[bytes, str]) -> None:
        """
        Set the caller's own digest.

        Raises:
            InvalidMember: If the oracle does not recognize caller
            OracleUnavailable: If the oracle cannot answer
        """
        caller = to_identity(caller)
        digest = to_digest(digest)

        with self._lock:
            self._require_member(caller)
            writes = [(caller, digest)]
            self._store.write_digests(writes)
            self._emit(writes)

    def batch_update(
        self,
        caller: Union[bytes, str],
        identities: Sequence[Union[bytes, str]],
        digests: Sequence[Union[bytes, str]]
    ) -> None:
        """
        Set digests for many identities at once. Seeder only.

        Checks, in order: caller is the seeder, the sequences have equal
        length, every identity is a recognized member. Nothing is written
        unless all checks pass.

        Raises:
            UnauthorizedSeeder: If caller is not the current seeder
            LengthMismatch: If identities and digests differ in length
            InvalidMember: On the first unrecognized identity
            OracleUnavailable: If the oracle cannot answer
        """
        caller = to_identity(caller)

        with self._lock:
            self._require_seeder(caller)
            if len(identities) != len(digests):
                raise LengthMismatch(len(identities), len(digests))

            writes: List[DigestWrite] = [
                (to_identity(i), to_digest(d)) for i, d in zip(identities, digests)
            ]
            for identity, _ in writes:
                self._require_member(identity)

            if writes:
                self._store.write_digests(writes, expected_seeder=caller)
                self._emit(writes)

    def renounce_seeder(self, caller: Union[bytes, str]) -> None:
        """
        Permanently give up the seeder role.

        Raises:
            UnauthorizedSeeder: If caller is not the current seeder
        """
        caller = to_identity(caller)

        with self._lock:
            self._require_seeder(caller)
            self._store.clear_seeder(expected_seeder=caller)
            logger.info("seeder %s renounced", identity_hex(caller))

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def _require_member(self, identity: Identity) -> None:
        if not is_recognized_member(self._oracle, identity):
            raise InvalidMember(identity)

    def _require_seeder(self, caller: Identity) -> None:
        seeder = self._store.get_seeder()
        if seeder is None or caller != seeder:
            raise UnauthorizedSeeder(caller)

    def _emit(self, writes: Sequence[DigestWrite]) -> None:
        # Called with the lock held, after the store has committed.
        for identity, digest in writes:
            event = MetadataDigestUpdated(identity=identity, digest=digest)
            for listener in self._listeners:
                try:
                    listener(event)
                except Exception:
                    logger.exception("digest listener failed for %s", identity_hex(identity))
