"""VirtualBox debug source backed by the VBoxManage CLI and psutil."""

import logging
import os
import re
import subprocess
import tempfile
from pathlib import Path
from typing import Protocol

import psutil

from vboxtop.coredump import CoreDump
from vboxtop.errors import CoreDumpError, VBoxManageError
from vboxtop.models import Pointer, Registers, StackFrame, VMInfo

logger = logging.getLogger(__name__)

# Executables that host a running VM; each carries the VM on its command line.
VM_HOST_PROCESSES = frozenset({"VBoxHeadless", "VirtualBoxVM", "VirtualBox", "VBoxSDL"})

_REGISTER_RE = re.compile(r"^\s*([A-Za-z][\w.]*)\s*=\s*(0[xX][0-9A-Fa-f]+|\d+)\s*$")

_PTR = r"([0-9A-Fa-f]{4}):([0-9A-Fa-f]{8,16})"
_ARG = r"([0-9A-Fa-f]{8,16})"
_STACK_RE = re.compile(
    rf"^\s*{_PTR}\s+{_PTR}\s+{_PTR}\s+{_ARG}\s+{_ARG}\s+{_ARG}\s+{_ARG}\s+{_PTR}"
)


class DebugSource(Protocol):
    """Point-in-time debugger data for a named VM."""

    def registers(self, vm_name: str) -> Registers | None: ...

    def stack(self, vm_name: str) -> list[StackFrame]: ...

    def dump(self, vm_name: str) -> CoreDump | None: ...

    def running_vms(self) -> list[VMInfo]: ...


def parse_registers(output: str) -> Registers | None:
    """Parse ``getregisters`` output; ``None`` if no register line was found."""
    values: dict[str, int] = {}
    for line in output.splitlines():
        match = _REGISTER_RE.match(line)
        if match:
            name, raw = match.groups()
            values[name] = int(raw, 0) if raw.lower().startswith("0x") else int(raw)
    return Registers(values) if values else None


def parse_stack(output: str) -> list[StackFrame]:
    """Parse the frame rows of ``stack`` output, skipping headers and symbols."""
    frames: list[StackFrame] = []
    for line in output.splitlines():
        match = _STACK_RE.match(line)
        if not match:
            continue
        g = [int(v, 16) for v in match.groups()]
        frames.append(
            StackFrame(
                bp=Pointer(g[0], g[1]),
                ret_bp=Pointer(g[2], g[3]),
                ret_ip=Pointer(g[4], g[5]),
                args=(g[6], g[7], g[8], g[9]),
                ip=Pointer(g[10], g[11]),
            )
        )
    return frames


def _option_value(cmdline: list[str], option: str) -> str | None:
    """Return the value of ``--option value`` or ``--option=value``."""
    for i, arg in enumerate(cmdline):
        if arg == option and i + 1 < len(cmdline):
            return cmdline[i + 1]
        if arg.startswith(option + "="):
            return arg.split("=", 1)[1]
    return None


class VBoxManage:
    """
    DebugSource implementation that shells out to ``VBoxManage debugvm``.

    Every failure is logged and reported as an absent value so callers can
    simply retry on their next poll.
    """

    def __init__(
        self, executable: str = "VBoxManage", cpu: int = 0, timeout: float | None = None
    ) -> None:
        """
        Initialize the source.

        Args:
            executable: Name or path of the VBoxManage binary.
            cpu: Index of the virtual CPU to inspect.
            timeout: Per-command timeout in seconds; None waits for the
                command however long it takes.
        """
        self._executable = executable
        self._cpu = cpu
        self._timeout = timeout

    @property
    def executable(self) -> str:
        return self._executable

    def _run(self, *args: str) -> str:
        cmd = [self._executable, *args]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self._timeout)
        except FileNotFoundError as exc:
            raise VBoxManageError(f"{self._executable} not found") from exc
        except subprocess.TimeoutExpired as exc:
            raise VBoxManageError(f"{' '.join(cmd)} timed out after {self._timeout}s") from exc

        if result.returncode != 0:
            raise VBoxManageError(
                f"{' '.join(cmd)} exited with {result.returncode}",
                returncode=result.returncode,
                stderr=result.stderr.strip(),
            )
        return result.stdout

    def registers(self, vm_name: str) -> Registers | None:
        try:
            output = self._run("debugvm", vm_name, "getregisters", "--cpu", str(self._cpu), "all")
        except VBoxManageError as exc:
            logger.debug(
                "getregisters failed for %s: %s (exit %s) %s", vm_name, exc, exc.returncode, exc.stderr
            )
            return None
        return parse_registers(output)

    def stack(self, vm_name: str) -> list[StackFrame]:
        try:
            output = self._run("debugvm", vm_name, "stack", "--cpu", str(self._cpu))
        except VBoxManageError as exc:
            logger.debug(
                "stack failed for %s: %s (exit %s) %s", vm_name, exc, exc.returncode, exc.stderr
            )
            return []
        return parse_stack(output)

    def dump(self, vm_name: str) -> CoreDump | None:
        """Capture a fresh core image; the temporary file is unlinked once mapped."""
        with tempfile.TemporaryDirectory(prefix="vboxtop-", ignore_cleanup_errors=True) as tmp:
            path = Path(tmp) / "guest.core"
            try:
                self._run("debugvm", vm_name, "dumpvmcore", "--filename", str(path))
                return CoreDump.open(path)
            except (VBoxManageError, CoreDumpError, OSError) as exc:
                logger.debug("dumpvmcore failed for %s: %s", vm_name, exc)
                return None

    def running_vms(self) -> list[VMInfo]:
        """
        List running VMs by scanning for VirtualBox VM host processes.

        Processes that vanish or deny access mid-scan are skipped.
        """
        vms: list[VMInfo] = []
        for proc in psutil.process_iter(attrs=["name", "cmdline"]):
            try:
                info = proc.info
                name = os.path.splitext(info.get("name") or "")[0]
                if name not in VM_HOST_PROCESSES:
                    continue

                cmdline = info.get("cmdline") or []
                comment = _option_value(cmdline, "--comment")
                startvm = _option_value(cmdline, "--startvm")
                if comment is None and startvm is None:
                    # The VirtualBox manager GUI itself, not a VM
                    continue

                vms.append(VMInfo(name=comment or startvm or "", uuid=startvm or ""))
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue

        return vms


def is_running(vm_name: str, vms: list[VMInfo]) -> bool:
    """Whether ``vm_name`` matches the name or UUID of any running VM."""
    return any(vm_name in (vm.name, vm.uuid) for vm in vms)
