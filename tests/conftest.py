"""Shared fixtures for vboxtop tests."""

import struct
import threading
import time
from collections import Counter

import pytest

from vboxtop.coredump import PT_LOAD, CoreDump
from vboxtop.models import Pointer, Registers, StackFrame, VMInfo

VM_NAME = "testvm"
PT_NOTE = 4


def make_frame(n: int) -> StackFrame:
    """Build a distinguishable stack frame."""
    return StackFrame(
        bp=Pointer(0x10, 0xC1A3FF7C + n),
        ret_bp=Pointer(0x10, 0xC1A3FF9C + n),
        ret_ip=Pointer(0x08, 0xC1011AA1 + n),
        args=(n, n + 1, n + 2, n + 3),
        ip=Pointer(0x08, 0xC1011A00 + n),
    )


class FakeSource:
    """In-memory DebugSource that counts calls and can be slowed or broken."""

    def __init__(
        self,
        registers: Registers | None = None,
        stack: list[StackFrame] | None = None,
        dump: CoreDump | None = None,
        running: tuple[str, ...] = (VM_NAME,),
        delay: float = 0.0,
        fail: bool = False,
    ) -> None:
        self._registers = registers
        self._stack = stack or []
        self._dump = dump
        self._running = running
        self.delay = delay
        self.fail = fail
        self.calls: Counter[str] = Counter()
        self._lock = threading.Lock()

    def _enter(self, kind: str) -> None:
        with self._lock:
            self.calls[kind] += 1
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise RuntimeError(f"{kind} unavailable")

    def registers(self, vm_name: str) -> Registers | None:
        self._enter("registers")
        return self._registers

    def stack(self, vm_name: str) -> list[StackFrame]:
        self._enter("stack")
        return list(self._stack)

    def dump(self, vm_name: str) -> CoreDump | None:
        self._enter("dump")
        return self._dump

    def running_vms(self) -> list[VMInfo]:
        self._enter("running_vms")
        return [VMInfo(name=name) for name in self._running]


def wait_for(predicate, timeout: float = 2.0) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def registers() -> Registers:
    return Registers({"ebx": 0xFF, "eax": 0x1})


@pytest.fixture
def dump() -> CoreDump:
    return CoreDump.from_bytes(b"Hello, World!" + bytes(range(256)) * 4)


@pytest.fixture
def source(registers: Registers, dump: CoreDump) -> FakeSource:
    return FakeSource(registers=registers, stack=[make_frame(i) for i in range(3)], dump=dump)


def build_core(segments: list[tuple[int, int, bytes]], ident_class: int = 2) -> bytes:
    """
    Build a minimal ELF64 core image.

    Args:
        segments: (p_type, physical address, contents) per program header.
        ident_class: EI_CLASS byte, 2 for ELF64.
    """
    ehsize, phentsize = 64, 56
    phoff = ehsize
    data_offset = phoff + phentsize * len(segments)

    ident = b"\x7fELF" + bytes([ident_class, 1, 1]) + bytes(9)
    header = struct.pack(
        "<16sHHIQQQIHHHHHH",
        ident, 4, 62, 1, 0, phoff, 0, 0, ehsize, phentsize, len(segments), 0, 0, 0,
    )

    phdrs = b""
    payload = b""
    for p_type, address, contents in segments:
        offset = data_offset + len(payload)
        phdrs += struct.pack(
            "<IIQQQQQQ", p_type, 6, offset, address, address, len(contents), len(contents), 1
        )
        payload += contents

    return header + phdrs + payload


def minimal_core(contents: bytes) -> bytes:
    return build_core([(PT_LOAD, 0, contents)])
