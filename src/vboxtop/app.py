"""vboxtop - dashboard layout, memory navigation and entry point."""

import logging
from dataclasses import dataclass

from vboxtop.config import Settings, build_arg_parser
from vboxtop.models import Registers, StackFrame
from vboxtop.monitor import Monitor
from vboxtop.screen import Screen, Window
from vboxtop.vboxmanage import VBoxManage

logger = logging.getLogger(__name__)

# Minimum terminal size (width, height) for each panel
REGISTERS_MIN_SIZE = (30, 25)
STACK_MIN_SIZE = (190, 25)
MEMORY_MIN_SIZE = (30, 35)

MAX_STACK_FRAMES = 16

STACK_HEADER = (
    "SS:BP:                | Ret SS:BP:            | Ret CS:EIP:           "
    "| Arg 0:     | Arg 1:     | Arg 2:     | Arg 3:     | CS:EIP:"
)


def format_hex(value: int, digits: int = 8) -> str:
    """Format an unsigned value as zero-padded uppercase hex."""
    return f"0x{value:0{digits}X}"


def format_register(name: str, value: int) -> str:
    """Format one row of the registers panel, e.g. ``'   EAX: 0x...'``."""
    return f"{name.upper():>6}: {format_hex(value, 16)}"


def format_frame(frame: StackFrame) -> str:
    args = " | ".join(format_hex(arg) for arg in frame.args)
    return f"{frame.bp} | {frame.ret_bp} | {frame.ret_ip} | {args} | {frame.ip}"


def printable(byte: int) -> str:
    """ASCII view of a byte; whitespace and non-printables become a dot."""
    return chr(byte) if 0x21 <= byte <= 0x7E else "."


@dataclass(slots=True)
class MemoryViewport:
    """Window into the memory image currently shown on screen."""

    offset: int = 0
    bytes_per_line: int = 0
    lines: int = 0
    total_memory: int = 0

    def resize(self, total_memory: int, bytes_per_line: int, lines: int) -> None:
        """Adopt the latest dump size and terminal geometry."""
        self.total_memory = total_memory
        self.bytes_per_line = bytes_per_line
        self.lines = lines
        if self.offset >= total_memory:
            self.offset = 0

    def scroll_up(self, n: int = 1) -> None:
        step = self.bytes_per_line * n
        self.offset = self.offset - step if self.offset > step else 0

    def scroll_down(self, n: int = 1) -> None:
        step = self.bytes_per_line * n
        if self.offset + step < self.total_memory:
            self.offset += step

    def page_up(self) -> None:
        self.scroll_up(self.lines)

    def page_down(self) -> None:
        self.scroll_down(self.lines)

    def reset(self) -> None:
        self.offset = 0


class Dashboard:
    """
    Live dashboard for one VM.

    Wires a Monitor to a Screen: every render tick redraws the title,
    registers, stack and memory panels from the monitor's latest snapshots,
    and key presses drive memory navigation.
    """

    KEY_BINDINGS = {
        "q": "quit",
        "a": "line_up",
        "s": "line_down",
        "d": "page_up",
        "f": "page_down",
        "g": "top",
    }

    def __init__(
        self,
        vm_name: str,
        monitor: Monitor | None = None,
        screen: Screen | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the Dashboard and register its screen callbacks."""
        settings = settings or Settings(vm_name=vm_name)
        if monitor is None:
            source = VBoxManage(settings.vboxmanage, settings.cpu, settings.command_timeout)
            monitor = Monitor(vm_name, source, poll_interval=settings.poll_interval)

        self._vm_name = vm_name
        self._monitor = monitor
        self._screen = screen or Screen(tick_interval=settings.tick_interval)
        self._viewport = MemoryViewport()
        self._running = False

        self._screen.on_update(self._draw)
        self._screen.on_key_press(self._handle_key)

    @property
    def viewport(self) -> MemoryViewport:
        return self._viewport

    def run(self) -> None:
        """Start sampling and block in the screen loop until ``q`` is pressed."""
        if self._running:
            return

        self._running = True
        self._monitor.start()
        try:
            self._screen.start()
        finally:
            # Also covers the loop ending some other way than the quit key
            self._monitor.stop()
            self._running = False

    def _fits(self, min_size: tuple[int, int]) -> bool:
        min_width, min_height = min_size
        return self._screen.width() >= min_width and self._screen.height() >= min_height

    def _draw(self) -> None:
        self._draw_title()
        self._draw_registers()
        self._draw_stack()
        self._draw_memory()

    def _draw_title(self) -> None:
        width = self._screen.width()
        if self._screen.height() < 3 or width <= 0:
            return

        status = "[running]" if self._monitor.live() else "[stopped]"
        self._screen.hline(0, 0, width)
        self._screen.addstr(1, 0, f"VirtualBox: {self._vm_name} {status}")
        self._screen.hline(2, 0, width)

    def _panel(self, title: str, height: int, width: int, y: int, x: int) -> Window:
        win = self._screen.new_window(height, width, y, x)
        win.box()
        win.addstr(1, 2, title)
        win.hline(2, 1, width - 2)
        return win

    def _draw_registers(self) -> None:
        if not self._fits(REGISTERS_MIN_SIZE):
            return

        win = self._panel("CPU Registers:", 22, 30, 3, 0)
        registers: Registers | None = self._monitor.registers()
        if registers is not None:
            # Rows 3 up to the bottom border
            rows = registers.all()[: win.height - 4]
            for y, (name, value) in enumerate(rows, start=3):
                win.addstr(y, 2, format_register(name, value))

        win.refresh()
        self._screen.refresh()

    def _draw_stack(self) -> None:
        if not self._fits(STACK_MIN_SIZE):
            return

        width = self._screen.width() - 30
        win = self._panel("Stack:", 22, width, 3, 30)
        win.addstr(3, 2, STACK_HEADER)
        win.hline(4, 1, width - 2)

        frames = self._monitor.stack()[:MAX_STACK_FRAMES]
        for y, frame in enumerate(frames, start=5):
            win.addstr(y, 2, format_frame(frame))

        win.refresh()
        self._screen.refresh()

    def _draw_memory(self) -> None:
        if not self._fits(MEMORY_MIN_SIZE):
            return

        width = self._screen.width()
        height = self._screen.height()
        win = self._panel("Memory:", height - 25, width, 25, 0)

        dump = self._monitor.dump()
        if dump is not None and dump.memory_size() > 0:
            view = self._viewport
            view.resize(dump.memory_size(), (width - 4) // 4 - 5, height - 29)

            per_line = view.bytes_per_line
            data = dump.read_memory(view.offset, per_line * view.lines)
            hex_x = 2
            sep_x = per_line * 3 + 4 + 16
            ascii_x = sep_x + 2

            for row, start in enumerate(range(0, len(data), per_line), start=3):
                chunk = data[start:start + per_line]
                cells = " ".join(f"{b:02X}" for b in chunk)
                win.addstr(row, hex_x, f"{view.offset + start:016X}: {cells}")
                win.addstr(row, ascii_x, "".join(printable(b) for b in chunk))

            win.vline(3, sep_x, view.lines)

        win.refresh()
        self._screen.refresh()

    def _handle_key(self, key: str) -> None:
        action = self.KEY_BINDINGS.get(key)
        if action is not None:
            getattr(self, f"action_{action}")()

    def action_quit(self) -> None:
        """Stop sampling, then leave the screen loop."""
        self._monitor.stop()
        self._screen.stop()

    def action_line_up(self) -> None:
        self._viewport.scroll_up()

    def action_line_down(self) -> None:
        self._viewport.scroll_down()

    def action_page_up(self) -> None:
        self._viewport.page_up()

    def action_page_down(self) -> None:
        self._viewport.page_down()

    def action_top(self) -> None:
        self._viewport.reset()


def _configure_logging(settings: Settings) -> None:
    level = getattr(logging, settings.log_level, logging.WARNING)
    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    if settings.log_file is not None:
        logging.basicConfig(filename=settings.log_file, level=level, format=fmt)
    else:
        # The terminal belongs to the dashboard; without a log file, drop records
        logging.basicConfig(level=level, handlers=[logging.NullHandler()])


def main(argv: list[str] | None = None) -> int:
    """Entry point for vboxtop."""
    args = build_arg_parser().parse_args(argv)
    settings = Settings.from_args(args)
    _configure_logging(settings)
    logger.info("vboxtop starting for %s", settings.vm_name)

    dashboard = Dashboard(settings.vm_name, settings=settings)
    dashboard.run()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
