"""In-process mutual exclusion for risk mutations and period commits.

Two scopes are coordinated:

- Per risk: every read-modify-write on a risk (apply/undo, link changes)
  runs under that risk's lock, so no reader observes an alert marked
  applied without the matching recomputation.
- Per organization: mutations take a shared hold on the organization gate,
  a commit takes the exclusive hold. While a commit holds the gate, new
  mutations fail fast with ``CommitInProgress``; the commit itself waits
  for in-flight mutations to drain.

Cross-process exclusivity is provided by row locks taken in the store
(see ``app.core.period_store``); these primitives cover threads within one
worker.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, Optional, Set, Tuple

from app.core.config import settings
from app.core.errors import CommitInProgress, ConcurrentModification

logger = logging.getLogger(__name__)


class KeyedLockRegistry:
    """Reentrant lock per key, released from the registry once unused."""

    def __init__(self, name: str):
        self.name = name
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, Tuple[threading.RLock, int]] = {}

    def _checkout(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock, users = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.RLock()
            self._locks[key] = (lock, users + 1)
            return lock

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            lock, users = self._locks[key]
            if users <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    @contextmanager
    def hold(self, key: Hashable, timeout: Optional[float] = None) -> Iterator[None]:
        timeout = settings.LOCK_TIMEOUT_SECONDS if timeout is None else timeout
        lock = self._checkout(key)
        try:
            if not lock.acquire(timeout=timeout):
                logger.warning("Timed out after %.1fs waiting for %s lock %s", timeout, self.name, key)
                raise ConcurrentModification(
                    f"{self.name.capitalize()} {key} is being modified by another request"
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._checkin(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class OrganizationGate:
    """Shared/exclusive gate per organization (mutations vs. commit)."""

    def __init__(self):
        self._cond = threading.Condition()
        self._active: Dict[int, int] = {}
        self._committing: Set[int] = set()

    def is_committing(self, organization_id: int) -> bool:
        with self._cond:
            return organization_id in self._committing

    def active_mutations(self, organization_id: int) -> int:
        with self._cond:
            return self._active.get(organization_id, 0)

    @contextmanager
    def mutation(self, organization_id: int) -> Iterator[None]:
        with self._cond:
            if organization_id in self._committing:
                raise CommitInProgress(organization_id)
            self._active[organization_id] = self._active.get(organization_id, 0) + 1
        try:
            yield
        finally:
            with self._cond:
                remaining = self._active[organization_id] - 1
                if remaining:
                    self._active[organization_id] = remaining
                else:
                    del self._active[organization_id]
                self._cond.notify_all()

    @contextmanager
    def exclusive(self, organization_id: int, timeout: Optional[float] = None) -> Iterator[None]:
        timeout = settings.LOCK_TIMEOUT_SECONDS if timeout is None else timeout
        with self._cond:
            if organization_id in self._committing:
                raise CommitInProgress(organization_id)
            # Claim first so no new mutation is admitted while draining
            self._committing.add(organization_id)
            drained = self._cond.wait_for(
                lambda: self._active.get(organization_id, 0) == 0, timeout=timeout
            )
            if not drained:
                self._committing.discard(organization_id)
                self._cond.notify_all()
                logger.warning(
                    "Commit for organization %s timed out waiting for %d in-flight mutations",
                    organization_id, self._active.get(organization_id, 0),
                )
                raise ConcurrentModification(
                    f"Organization {organization_id} still has in-flight mutations; commit aborted"
                )
        try:
            yield
        finally:
            with self._cond:
                self._committing.discard(organization_id)
                self._cond.notify_all()


organization_gate = OrganizationGate()
risk_locks = KeyedLockRegistry("risk")


@contextmanager
def risk_mutation(organization_id: int, risk_id: Optional[int] = None) -> Iterator[None]:
    """Shared organization hold plus, when given, the risk's own lock."""
    with organization_gate.mutation(organization_id):
        if risk_id is None:
            yield
        else:
            with risk_locks.hold(risk_id):
                yield
