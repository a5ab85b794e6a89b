"""Data models for vboxtop."""

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass


@dataclass(slots=True, frozen=True)
class Pointer:
    """A segmented address as reported by the VirtualBox debugger."""

    segment: int
    offset: int

    def __str__(self) -> str:
        return f"{self.segment:04X}:{self.offset:016X}"


@dataclass(slots=True, frozen=True)
class StackFrame:
    """Immutable snapshot of a single stack frame."""

    bp: Pointer
    ret_bp: Pointer
    ret_ip: Pointer
    args: tuple[int, int, int, int]
    ip: Pointer


@dataclass(slots=True, frozen=True)
class VMInfo:
    """A running virtual machine."""

    name: str
    uuid: str = ""


class Registers(Mapping[str, int]):
    """
    Immutable register set, keyed by lowercase register name.

    Iteration is sorted by name so the rendering order never depends on the
    order the debugger printed the registers in.
    """

    __slots__ = ("_values",)

    def __init__(self, values: Mapping[str, int] | Iterable[tuple[str, int]] = ()) -> None:
        items = values.items() if isinstance(values, Mapping) else values
        self._values: dict[str, int] = {
            name.lower(): value for name, value in sorted(items, key=lambda p: p[0].lower())
        }

    def __getitem__(self, name: str) -> int:
        return self._values[name.lower()]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Registers({self._values!r})"

    def all(self) -> list[tuple[str, int]]:
        """Return (name, value) pairs in display order."""
        return list(self._values.items())
