"""
Call-level atomicity and re-entry protection.

Each protocol entry point runs inside `ReentrancyGuard.enter(owner)` and an
`atomic(...)` section. The guard is keyed by the vault owner's identity, so a
transfer hook can never re-enter any mutating call on the same vault, while
calls touching other vaults proceed. The atomic section snapshots every
stateful component and restores all of them if the call raises.

Restoring writes the saved values back into the live objects, so records a
caller already holds (a vault, a beneficiary entry, a milestone) stay attached
to the component after a nested call fails and rolls back. Append-only logs
are not copied; they roll back by truncation to their length at entry.
"""

import copy
import logging
from contextlib import contextmanager
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, Set, Tuple

from .errors import ReentrantCall
from .identity import short

logger = logging.getLogger(__name__)

Snapshot = Tuple[Dict[str, Any], Dict[str, int]]


def restore_into(live: Any, saved: Any) -> Any:
    """Copy `saved` back into `live`, keeping objects that already existed.

    Returns what the owner of `live` should hold afterwards: `live` itself when
    it was restored in place, otherwise `saved`.
    """
    if live is saved or type(live) is not type(saved) or isinstance(live, Enum):
        return saved
    if isinstance(live, dict):
        restored = {
            key: restore_into(live[key], value) if key in live else value
            for key, value in saved.items()
        }
        live.clear()
        live.update(restored)
        return live
    if isinstance(live, list):
        kept = [restore_into(current, value) for current, value in zip(live, saved)]
        live[:] = kept + saved[len(kept):]
        return live
    if isinstance(live, set):
        live.clear()
        live.update(saved)
        return live
    if hasattr(live, "__dict__"):
        fields = vars(live)
        restored = {
            name: restore_into(fields[name], value) if name in fields else value
            for name, value in vars(saved).items()
        }
        fields.clear()
        fields.update(restored)
        return live
    return saved


class Snapshottable:
    """Mixin for components whose mutable records must roll back together"""

    _state_fields: Tuple[str, ...] = ()
    _journal_fields: Tuple[str, ...] = ()  # append-only lists

    def snapshot(self) -> Snapshot:
        state = {name: copy.deepcopy(getattr(self, name)) for name in self._state_fields}
        lengths = {name: len(getattr(self, name)) for name in self._journal_fields}
        return state, lengths

    def restore(self, snapshot: Snapshot) -> None:
        state, lengths = snapshot
        for name, value in state.items():
            setattr(self, name, restore_into(getattr(self, name), value))
        for name, length in lengths.items():
            del getattr(self, name)[length:]


class ReentrancyGuard:
    """Per-owner call-in-progress lock"""

    def __init__(self):
        self._active: Set[str] = set()
        self._operations: Dict[str, str] = {}

    def is_active(self, key: str) -> bool:
        return key in self._active

    @contextmanager
    def enter(self, key: str, operation: str) -> Iterator[None]:
        if key in self._active:
            logger.warning(
                "Rejected re-entry into %s for %s while %s is in progress",
                operation,
                short(key),
                self._operations.get(key),
            )
            raise ReentrantCall(
                f"{operation} re-entered while {self._operations.get(key)} is in progress",
                details={"owner": key, "operation": operation},
            )
        self._active.add(key)
        self._operations[key] = operation
        try:
            yield
        finally:
            self._active.discard(key)
            self._operations.pop(key, None)


@contextmanager
def atomic(components: Iterable[Snapshottable]) -> Iterator[None]:
    snapshots = [(component, component.snapshot()) for component in components]
    try:
        yield
    except Exception:
        for component, snapshot in snapshots:
            component.restore(snapshot)
        raise
