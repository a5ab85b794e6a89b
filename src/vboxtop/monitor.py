"""Snapshot engine for vboxtop."""

import logging
import threading
from collections.abc import Callable
from typing import Any

from vboxtop.coredump import CoreDump
from vboxtop.models import Registers, StackFrame
from vboxtop.vboxmanage import DebugSource, VBoxManage, is_running

logger = logging.getLogger(__name__)


class _State:
    """
    Everything a monitor shares with its poller threads.

    Pollers hold a reference to the state block, never to the Monitor, so a
    Monitor can replace its state without pulling it out from under them.
    """

    def __init__(self, vm_name: str, source: DebugSource, poll_interval: float) -> None:
        self.vm_name = vm_name
        self.source = source
        self.poll_interval = poll_interval
        self.lock = threading.Lock()
        self.stop_event = threading.Event()
        self.registers: Registers | None = None
        self.stack: tuple[StackFrame, ...] = ()
        self.dump: CoreDump | None = None
        self.live = False
        self.running = False
        self.generation = 0
        self.threads: list[threading.Thread] = []

    def snapshot(self) -> "_State":
        """Build a stopped copy of the data fields; liveness is not carried over."""
        with self.lock:
            clone = _State(self.vm_name, self.source, self.poll_interval)
            clone.registers = self.registers
            clone.stack = self.stack
            clone.dump = self.dump
        return clone


class Monitor:
    """
    Samples registers, stack, memory and liveness of one VirtualBox VM.

    Four daemon threads poll the debug source independently and store each
    result under a lock. Readers get the latest value of each kind; the four
    values are not guaranteed to come from the same instant.
    """

    _swap_lock = threading.Lock()

    def __init__(
        self,
        vm_name: str,
        source: DebugSource | None = None,
        poll_interval: float = 0.0,
    ) -> None:
        """
        Initialize the Monitor and compute liveness once.

        Args:
            vm_name: Name or UUID of the VM to monitor.
            source: Debugger backend. Defaults to ``VBoxManage()``.
            poll_interval: Minimum pause between fetches of one kind, in
                seconds. ``0.0`` polls back to back.
        """
        state = _State(vm_name, source or VBoxManage(), max(0.0, poll_interval))
        try:
            state.live = _fetch_live(state)
        except Exception:
            logger.warning("Could not determine whether %s is running", vm_name, exc_info=True)
        self._state = state

    @classmethod
    def _from_state(cls, state: _State) -> "Monitor":
        monitor = cls.__new__(cls)
        monitor._state = state
        return monitor

    def __copy__(self) -> "Monitor":
        return Monitor._from_state(self._state.snapshot())

    def __deepcopy__(self, memo: dict[int, Any]) -> "Monitor":
        return self.__copy__()

    def __repr__(self) -> str:
        return f"Monitor({self.vm_name!r}, running={self.is_running})"

    @property
    def vm_name(self) -> str:
        return self._state.vm_name

    @property
    def is_running(self) -> bool:
        """Check if the poller threads are running."""
        state = self._state
        with state.lock:
            return state.running

    def live(self) -> bool:
        state = self._state
        with state.lock:
            return state.live

    def registers(self) -> Registers | None:
        state = self._state
        with state.lock:
            return state.registers

    def stack(self) -> tuple[StackFrame, ...]:
        state = self._state
        with state.lock:
            return state.stack

    def dump(self) -> CoreDump | None:
        state = self._state
        with state.lock:
            return state.dump

    def start(self) -> None:
        """Start the four poller threads; does nothing if already running."""
        state = self._state
        with state.lock:
            if state.running and not state.stop_event.is_set():
                return

            # Pollers of an earlier run that is still stopping keep their own event
            stop_event = threading.Event()
            state.stop_event = stop_event
            state.generation += 1
            state.running = True
            state.threads = [
                threading.Thread(
                    target=_poll,
                    args=(state, stop_event, name, fetch, store),
                    daemon=True,
                    name=f"Monitor-{name}",
                )
                for name, fetch, store in _POLLERS
            ]
            for thread in state.threads:
                thread.start()

        logger.info("Started monitoring %s", state.vm_name)

    def stop(self) -> None:
        """
        Stop the poller threads and wait for them to finish.

        Each thread exits after its in-flight fetch returns, so this blocks
        for as long as the slowest fetch takes. Concurrent callers all wait
        for the same pollers.
        """
        state = self._state
        with state.lock:
            threads = list(state.threads)
            generation = state.generation
            state.stop_event.set()

        for thread in threads:
            thread.join()

        with state.lock:
            if state.generation != generation:
                return  # restarted while we were waiting
            was_running = state.running
            state.running = False
            state.threads = []

        if was_running:
            logger.info("Stopped monitoring %s", state.vm_name)

    def swap(self, other: "Monitor") -> None:
        """Exchange internal state with ``other``, running pollers included."""
        with Monitor._swap_lock:
            self._state, other._state = other._state, self._state

    def assign(self, other: "Monitor") -> None:
        """
        Replace this monitor's state with a stopped copy of ``other``.

        Pollers still attached to the replaced state are told to stop and
        wind down on their own.
        """
        fresh = other._state.snapshot()
        with Monitor._swap_lock:
            old, self._state = self._state, fresh

        with old.lock:
            old.stop_event.set()


def _fetch_live(state: _State) -> bool:
    return is_running(state.vm_name, state.source.running_vms())


def _store_registers(state: _State, value: Any) -> None:
    state.registers = value


def _store_stack(state: _State, value: Any) -> None:
    state.stack = tuple(value or ())


def _store_dump(state: _State, value: Any) -> None:
    state.dump = value


def _store_live(state: _State, value: Any) -> None:
    state.live = bool(value)


Fetch = Callable[[_State], Any]
Store = Callable[[_State, Any], None]

# (thread suffix, fetch from the source, store into the state)
_POLLERS: tuple[tuple[str, Fetch, Store], ...] = (
    ("registers", lambda s: s.source.registers(s.vm_name), _store_registers),
    ("stack", lambda s: s.source.stack(s.vm_name), _store_stack),
    ("memory", lambda s: s.source.dump(s.vm_name), _store_dump),
    ("live", _fetch_live, _store_live),
)


def _poll(
    state: _State, stop_event: threading.Event, name: str, fetch: Fetch, store: Store
) -> None:
    """Fetch one kind of data until ``stop_event`` is set."""
    while not stop_event.is_set():
        try:
            value = fetch(state)
        except Exception:
            # A broken source must not kill the poller; store the empty value
            logger.debug("Polling %s for %s failed", name, state.vm_name, exc_info=True)
            value = None

        with state.lock:
            store(state, value)

        if state.poll_interval:
            stop_event.wait(timeout=state.poll_interval)
