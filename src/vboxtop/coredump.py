"""Read-only access to VirtualBox guest core images."""

import logging
import mmap
import struct
import weakref
from dataclasses import dataclass
from pathlib import Path

from vboxtop.errors import CoreDumpError

logger = logging.getLogger(__name__)

ELF_MAGIC = b"\x7fELF"
ELFCLASS64 = 2
ELFDATA2LSB = 1
PT_LOAD = 1

_EHDR = struct.Struct("<16sHHIQQQIHHHHHH")
_PHDR = struct.Struct("<IIQQQQQQ")


@dataclass(slots=True, frozen=True)
class Segment:
    """A contiguous run of guest memory inside the image."""

    file_offset: int
    address: int
    size: int


class CoreDump:
    """
    Shared, read-only view over a captured guest memory image.

    The loadable segments of the image are presented as one flat byte range,
    ordered by guest physical address. Handles are immutable, so any number of
    readers may hold the same instance while a newer dump replaces it.
    """

    def __init__(self, buffer: bytes | mmap.mmap, segments: list[Segment]) -> None:
        self._buffer = buffer
        self._segments = sorted(segments, key=lambda s: s.address)
        self._size = sum(s.size for s in self._segments)
        if isinstance(buffer, mmap.mmap):
            weakref.finalize(self, buffer.close)

    @classmethod
    def from_bytes(cls, data: bytes) -> "CoreDump":
        """Wrap raw memory bytes as a single-segment image."""
        return cls(bytes(data), [Segment(file_offset=0, address=0, size=len(data))])

    @classmethod
    def open(cls, path: str | Path) -> "CoreDump":
        """
        Map an ELF64 core file written by ``VBoxManage debugvm dumpvmcore``.

        Raises:
            CoreDumpError: If the file is empty, not ELF64 little-endian, or
                has segments pointing outside the file.
        """
        with open(path, "rb") as f:
            try:
                buffer = mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ)
            except ValueError as exc:
                raise CoreDumpError(f"{path}: empty core file") from exc

        try:
            segments = cls._parse_segments(buffer)
        except CoreDumpError:
            buffer.close()
            raise

        logger.debug("Mapped %s: %d segments", path, len(segments))
        return cls(buffer, segments)

    @staticmethod
    def _parse_segments(buffer: bytes | mmap.mmap) -> list[Segment]:
        if len(buffer) < _EHDR.size:
            raise CoreDumpError("truncated ELF header")

        ident, _type, _machine, _version, _entry, phoff, _shoff, _flags, _ehsize, \
            phentsize, phnum, _shentsize, _shnum, _shstrndx = _EHDR.unpack_from(buffer, 0)

        if ident[:4] != ELF_MAGIC:
            raise CoreDumpError("not an ELF image")
        if ident[4] != ELFCLASS64 or ident[5] != ELFDATA2LSB:
            raise CoreDumpError("only little-endian ELF64 core images are supported")
        if phentsize < _PHDR.size:
            raise CoreDumpError(f"unexpected program header size {phentsize}")

        segments: list[Segment] = []
        for i in range(phnum):
            start = phoff + i * phentsize
            if start + _PHDR.size > len(buffer):
                raise CoreDumpError("program header table runs past end of file")

            p_type, _pflags, p_offset, _vaddr, p_paddr, p_filesz, _memsz, _align = \
                _PHDR.unpack_from(buffer, start)
            if p_type != PT_LOAD or p_filesz == 0:
                continue
            if p_offset + p_filesz > len(buffer):
                raise CoreDumpError(f"segment {i} runs past end of file")

            segments.append(Segment(file_offset=p_offset, address=p_paddr, size=p_filesz))

        return segments

    def memory_size(self) -> int:
        """Total number of guest memory bytes in the image."""
        return self._size

    def read_memory(self, offset: int, size: int) -> bytes:
        """
        Read up to ``size`` bytes starting at flat ``offset``.

        Reads stop at the end of the image; an offset at or past the end
        returns ``b""``.
        """
        if offset < 0 or size <= 0 or offset >= self._size:
            return b""

        end = min(offset + size, self._size)
        chunks: list[bytes] = []
        base = 0
        for seg in self._segments:
            seg_end = base + seg.size
            if seg_end > offset and base < end:
                lo = max(offset, base) - base
                hi = min(end, seg_end) - base
                chunks.append(self._buffer[seg.file_offset + lo:seg.file_offset + hi])
            if seg_end >= end:
                break
            base = seg_end

        return b"".join(chunks)
