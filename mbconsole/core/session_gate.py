import logging
from typing import Callable, List

from mbconsole.errors import SessionLocked

logger = logging.getLogger("mbconsole.session")


class SessionGate:
    """Process-wide lock flipped by the first authorization failure.

    Once locked the gate stays locked for the remaining lifetime of the
    process; only a restart with fresh credentials clears it.
    """

    def __init__(self) -> None:
        self._locked = False
        self._listeners: List[Callable[[], None]] = []

    @property
    def locked(self) -> bool:
        return self._locked

    def add_listener(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def lock(self) -> bool:
        """Lock the session. Returns True only for the call that locked it."""
        if self._locked:
            return False
        self._locked = True
        logger.warning("authorization rejected; session locked")
        for callback in self._listeners:
            try:
                callback()
            except Exception:
                logger.exception("session lock listener failed")
        return True

    def check(self) -> None:
        """Raise SessionLocked if no further requests may be attempted."""
        if self._locked:
            raise SessionLocked()
