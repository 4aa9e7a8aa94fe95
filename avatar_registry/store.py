"""
Registry state backends.

A RegistryStore owns the identity -> digest mapping and the seeder slot.
It does not authorize anything; AvatarRegistry validates a write completely
and then hands it to the store, which must apply it in one atomic step.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional, Sequence, Tuple

from .errors import UnauthorizedSeeder
from .types import ZERO_DIGEST, Digest, Identity

DigestWrite = Tuple[Identity, Digest]


class RegistryStore(ABC):
    """
    Abstract interface for registry state.

    Implementations must be:
    - Atomic (write_digests applies all entries or none)
    - Snapshot-consistent (readers never see a partially applied write)
    - One-way on the seeder slot (once cleared it is never set again)

    Seeder-gated calls pass expected_seeder. The store re-checks it inside
    the same atomic step as the write and raises UnauthorizedSeeder when the
    slot no longer holds that identity, so a renunciation committed by
    another process in the meantime is honored.
    """

    @abstractmethod
    def initialize(self, seeder: Optional[Identity]) -> None:
        """Set the initial seeder unless the store already holds state."""
        pass

    @abstractmethod
    def get_digest(self, identity: Identity) -> Digest:
        """Return identity's digest, or the zero digest when unset."""
        pass

    @abstractmethod
    def get_seeder(self) -> Optional[Identity]:
        pass

    @abstractmethod
    def write_digests(
        self,
        writes: Sequence[DigestWrite],
        expected_seeder: Optional[Identity] = None
    ) -> None:
        """Apply every write, in order, as one atomic step."""
        pass

    @abstractmethod
    def clear_seeder(self, expected_seeder: Optional[Identity] = None) -> None:
        pass


class InMemoryRegistryStore(RegistryStore):
    """
    In-memory registry state for development/testing.

    Writes build a fresh mapping and publish it with a single reference
    swap, so lock-free readers see either the old or the new mapping.
    """

    def __init__(self):
        self._digests: Dict[Identity, Digest] = {}
        self._seeder: Optional[Identity] = None
        self._initialized = False
        self._lock = threading.Lock()

    def initialize(self, seeder: Optional[Identity]) -> None:
        with self._lock:
            if self._initialized:
                return
            self._seeder = seeder
            self._initialized = True

    def get_digest(self, identity: Identity) -> Digest:
        return self._digests.get(identity, ZERO_DIGEST)

    def get_seeder(self) -> Optional[Identity]:
        return self._seeder

    def write_digests(
        self,
        writes: Sequence[DigestWrite],
        expected_seeder: Optional[Identity] = None
    ) -> None:
        with self._lock:
            self._check_seeder(expected_seeder)
            updated = dict(self._digests)
            for identity, digest in writes:
                updated[identity] = digest
            self._digests = updated

    def clear_seeder(self, expected_seeder: Optional[Identity] = None) -> None:
        with self._lock:
            self._check_seeder(expected_seeder)
            self._seeder = None

    def _check_seeder(self, expected_seeder: Optional[Identity]) -> None:
        if expected_seeder is not None and self._seeder != expected_seeder:
            raise UnauthorizedSeeder(expected_seeder)
