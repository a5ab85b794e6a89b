"""Command-line and environment configuration for vboxtop."""

import argparse
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(slots=True, frozen=True)
class Settings:
    """Immutable runtime settings."""

    vm_name: str
    vboxmanage: str = "VBoxManage"
    cpu: int = 0
    tick_interval: float = 0.25  # Seconds between redraws
    poll_interval: float = 0.0  # 0.0 polls the debugger back to back
    command_timeout: float | None = None  # None never times out a fetch
    log_file: Path | None = None
    log_level: str = "WARNING"

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "Settings":
        return cls(
            vm_name=args.vm_name,
            vboxmanage=args.vboxmanage,
            cpu=args.cpu,
            tick_interval=args.refresh,
            poll_interval=args.poll_interval,
            command_timeout=args.timeout,
            log_file=args.log_file,
            log_level=args.log_level.upper(),
        )


def _non_negative_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}") from exc
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {value}")
    return number


def _positive_float(value: str) -> float:
    number = _non_negative_float(value)
    if number == 0:
        raise argparse.ArgumentTypeError("must be > 0")
    return number


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid integer: {value!r}") from exc
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {value}")
    return number


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vboxtop",
        description="Live terminal dashboard for a running VirtualBox VM",
        epilog="Keys: q quit, a/s scroll memory by line, d/f by page, g back to offset 0",
    )
    parser.add_argument("vm_name", metavar="VM", help="Name or UUID of the virtual machine")
    parser.add_argument(
        "--vboxmanage",
        default=os.environ.get("VBOXMANAGE", "VBoxManage"),
        help="VBoxManage executable (default: $VBOXMANAGE or VBoxManage)",
    )
    parser.add_argument("--cpu", type=_non_negative_int, default=0, help="Virtual CPU to inspect")
    parser.add_argument(
        "--refresh",
        type=_positive_float,
        default=0.25,
        help="Seconds between screen redraws (default 0.25)",
    )
    parser.add_argument(
        "--poll-interval",
        type=_non_negative_float,
        default=0.0,
        help="Minimum seconds between debugger fetches of one kind (default 0, no pause)",
    )
    parser.add_argument(
        "--timeout",
        type=_positive_float,
        default=None,
        help="Timeout for a single VBoxManage command in seconds (default: none)",
    )
    parser.add_argument("--log-file", type=Path, help="Write logs to this file")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("VBOXTOP_LOG", "WARNING"),
        help="Logging level (default: $VBOXTOP_LOG or WARNING)",
    )
    return parser
