# app/x402/proofs.py
"""
Consumed payment proofs.

Every transaction signature may unlock content at most once. The store offers
two primitives used together by the verifier:

- lock(proof_id): per-proof mutex, held for the whole verification so that
  concurrent requests presenting the same proof are serialized
- try_consume(proof_id): atomic compare-and-insert into the consumed set

Requests with different proofs never wait on each other. Consumed proofs are
kept for the life of the process; a persistent backend only needs to provide
the same ProofStore interface.
"""
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import ContextManager, Dict, Iterator, Optional, Set

logger = logging.getLogger(__name__)


@dataclass
class _ProofLock:
    """Mutex for one proof id plus the number of callers holding or waiting on it."""
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class ProofStore(ABC):
    """Interface for consumed-proof storage."""

    @abstractmethod
    def is_consumed(self, proof_id: str) -> bool:
        ...

    @abstractmethod
    def try_consume(self, proof_id: str) -> bool:
        """Mark proof_id consumed. Returns False if it already was."""

    @abstractmethod
    def lock(self, proof_id: str) -> ContextManager[None]:
        """Serialize verifications of proof_id."""


class InMemoryProofStore(ProofStore):
    """
    Thread-safe, process-wide consumed-proof set.

    Per-proof locks are created on demand and dropped once nobody holds or
    waits on them, so memory only grows with the consumed set itself.
    """

    def __init__(self):
        self._consumed: Set[str] = set()
        self._locks: Dict[str, _ProofLock] = {}
        self._guard = threading.Lock()

    def is_consumed(self, proof_id: str) -> bool:
        with self._guard:
            return proof_id in self._consumed

    def try_consume(self, proof_id: str) -> bool:
        with self._guard:
            if proof_id in self._consumed:
                logger.warning(f"Proof already consumed: {proof_id}")
                return False
            self._consumed.add(proof_id)
        logger.info(f"Proof consumed: {proof_id}")
        return True

    @contextmanager
    def lock(self, proof_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(proof_id)
            if entry is None:
                entry = self._locks[proof_id] = _ProofLock()
            entry.users += 1

        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[proof_id]

    def consumed_count(self) -> int:
        with self._guard:
            return len(self._consumed)

    def active_locks(self) -> int:
        """Number of proof ids currently being verified (for diagnostics/tests)."""
        with self._guard:
            return len(self._locks)

    def clear(self) -> None:
        with self._guard:
            self._consumed.clear()
        logger.info("Cleared consumed proof set")


# Global proof store instance
_proof_store: Optional[InMemoryProofStore] = None
_proof_store_lock = threading.Lock()


def get_proof_store() -> InMemoryProofStore:
    """
    Get the global proof store instance.

    Returns:
        The singleton InMemoryProofStore
    """
    global _proof_store

    if _proof_store is None:
        with _proof_store_lock:
            if _proof_store is None:
                _proof_store = InMemoryProofStore()

    return _proof_store


def reset_proof_store() -> None:
    """Reset the global proof store (useful for testing)."""
    global _proof_store
    with _proof_store_lock:
        _proof_store = None
