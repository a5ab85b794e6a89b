"""Terminal screen driver for vboxtop, built on Textual."""

import logging
import shutil
from collections.abc import Callable

from rich.text import Text
from textual import events
from textual.app import App, ComposeResult
from textual.widgets import Static

logger = logging.getLogger(__name__)

HLINE = "─"
VLINE = "│"
CORNERS = ("┌", "┐", "└", "┘")


class Surface:
    """A fixed-size grid of characters; writes outside the grid are clipped."""

    def __init__(self, height: int = 0, width: int = 0) -> None:
        self._height = 0
        self._width = 0
        self._cells: list[list[str]] = []
        self.resize(height, width)

    @property
    def height(self) -> int:
        return self._height

    @property
    def width(self) -> int:
        return self._width

    def resize(self, height: int, width: int) -> None:
        """Resize to ``height`` x ``width`` and clear every cell."""
        self._height = max(0, height)
        self._width = max(0, width)
        self.erase()

    def erase(self) -> None:
        self._cells = [[" "] * self._width for _ in range(self._height)]

    def put(self, y: int, x: int, text: str) -> None:
        if not 0 <= y < self._height:
            return
        row = self._cells[y]
        for i, ch in enumerate(text):
            col = x + i
            if col >= self._width:
                break
            if col >= 0:
                row[col] = ch

    def lines(self) -> list[str]:
        return ["".join(row) for row in self._cells]


class Window(Surface):
    """
    A sub-region of the screen with its own coordinates.

    Drawing goes to the window's buffer; ``refresh()`` copies it onto the
    screen's base surface.
    """

    def __init__(self, screen: "Screen", height: int, width: int, y: int, x: int) -> None:
        super().__init__(height, width)
        self._screen = screen
        self._y = y
        self._x = x

    def addstr(self, y: int, x: int, text: str) -> None:
        self.put(y, x, text)

    def hline(self, y: int, x: int, n: int) -> None:
        self.put(y, x, HLINE * max(0, n))

    def vline(self, y: int, x: int, n: int) -> None:
        for i in range(max(0, n)):
            self.put(y + i, x, VLINE)

    def box(self) -> None:
        """Draw a single-line border around the window's edge."""
        h, w = self.height, self.width
        if h < 2 or w < 2:
            return
        top_left, top_right, bottom_left, bottom_right = CORNERS
        self.put(0, 0, top_left + HLINE * (w - 2) + top_right)
        self.put(h - 1, 0, bottom_left + HLINE * (w - 2) + bottom_right)
        self.vline(1, 0, h - 2)
        self.vline(1, w - 1, h - 2)

    def refresh(self) -> None:
        for i, line in enumerate(self.lines()):
            self._screen.surface.put(self._y + i, self._x, line)


class ScreenApp(App):
    """Textual application hosting a single full-screen character canvas."""

    CSS = """
    Screen {
        overflow: hidden;
    }

    #canvas {
        width: 100%;
        height: 100%;
    }
    """

    def __init__(self, owner: "Screen") -> None:
        """Initialize the ScreenApp."""
        super().__init__()
        self._owner = owner

    def compose(self) -> ComposeResult:
        yield Static(id="canvas")

    def on_mount(self) -> None:
        """Draw the first frame and start the render timer."""
        self._owner.tick()
        self.set_interval(self._owner.tick_interval, self._owner.tick)

    def on_key(self, event: events.Key) -> None:
        self._owner.key_pressed(event.key)

    def show_frame(self, text: Text) -> None:
        try:
            self.query_one("#canvas", Static).update(text)
        except Exception:
            pass  # Canvas not mounted yet


class Screen:
    """
    Owns the terminal and the render/input loop.

    Drawing code registers a redraw callback with ``on_update`` and a key
    callback with ``on_key_press``. Both run on the Textual event loop, never
    concurrently with each other.
    """

    def __init__(self, tick_interval: float = 0.25) -> None:
        """
        Initialize the Screen.

        Args:
            tick_interval: Seconds between redraws while idle.
        """
        self._tick_interval = tick_interval
        self._update_callback: Callable[[], None] | None = None
        self._key_callback: Callable[[str], None] | None = None
        self._app: ScreenApp | None = None
        self._stopping = False
        self.surface = Surface()

    @property
    def tick_interval(self) -> float:
        return self._tick_interval

    @property
    def app(self) -> ScreenApp:
        """The Textual app backing this screen, created on first use."""
        if self._app is None:
            self._app = ScreenApp(self)
        return self._app

    def on_update(self, callback: Callable[[], None]) -> None:
        self._update_callback = callback

    def on_key_press(self, callback: Callable[[str], None]) -> None:
        self._key_callback = callback

    def width(self) -> int:
        if self._app is not None and self._app.is_running:
            return self._app.size.width
        return shutil.get_terminal_size().columns

    def height(self) -> int:
        if self._app is not None and self._app.is_running:
            return self._app.size.height
        return shutil.get_terminal_size().lines

    def addstr(self, y: int, x: int, text: str) -> None:
        """Write ``text`` on the base surface at row ``y``, column ``x``."""
        self.surface.put(y, x, text)

    def hline(self, y: int, x: int, n: int) -> None:
        self.surface.put(y, x, HLINE * max(0, n))

    def new_window(self, height: int, width: int, y: int, x: int) -> Window:
        return Window(self, height, width, y, x)

    def refresh(self) -> None:
        """Push the base surface to the terminal."""
        if self._app is not None and self._app.is_running:
            self._app.show_frame(Text("\n".join(self.surface.lines()), no_wrap=True, overflow="crop"))

    def tick(self) -> None:
        """Run one render tick: clear, redraw, flush."""
        self.surface.resize(self.height(), self.width())
        if self._update_callback is not None:
            self._update_callback()
        self.refresh()

    def key_pressed(self, key: str) -> None:
        """Dispatch one key event, then redraw."""
        if self._key_callback is not None:
            self._key_callback(key)
        if not self._stopping:
            self.tick()

    def start(self) -> None:
        """Take over the terminal and block until ``stop()`` is called."""
        logger.debug("Screen loop starting")
        self._stopping = False
        self.app.run()
        logger.debug("Screen loop exited")
        self._app = None

    def stop(self) -> None:
        """Ask the loop to exit; Textual restores the terminal on the way out."""
        self._stopping = True
        if self._app is not None:
            self._app.exit()
