"""
System state for one workspace's memory: standby, indexing, indexed, error.

Hosts subscribe to changes (to show a status badge, for instance) with
add_listener(). A misbehaving listener is logged and skipped.
"""

from typing import Callable

from recollect.log import get_logger
from recollect.models import MemoryStatus, SystemState

logger = get_logger("state")

Listener = Callable[[MemoryStatus], None]


class StateManager:
    def __init__(self):
        self._state = SystemState.STANDBY
        self._message = ""
        self._processed = 0
        self._total = 0
        self._listeners: list[Listener] = []

    @property
    def state(self) -> SystemState:
        return self._state

    @property
    def message(self) -> str:
        return self._message

    def set_state(self, state: SystemState, message: str = ""):
        if state != self._state:
            logger.info(f"Memory state {self._state.value} -> {state.value}" + (f": {message}" if message else ""))
        self._state = state
        self._message = message
        self._notify()

    def set_progress(self, processed: int, total: int):
        self._processed = processed
        self._total = total
        self._notify()

    def get_status(self) -> MemoryStatus:
        return MemoryStatus(
            system_state=self._state,
            system_message=self._message,
            processed_episodes=self._processed,
            total_episodes=self._total,
        )

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; call the returned function to unsubscribe."""
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self):
        status = self.get_status()
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.warning(f"State listener failed: {e}")

    def dispose(self):
        self._listeners.clear()
