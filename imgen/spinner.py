import itertools
import sys
import threading
from typing import Optional, TextIO

FRAMES = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]
TICK = 0.08

BLUE = "\033[34m"
RESET = "\033[0m"
CLEAR_LINE = "\r\033[2K"

# The spinner currently on screen, if any. Log output goes through it.
_active: Optional["Spinner"] = None
_active_lock = threading.Lock()


class Spinner:
    """
    A "dots" spinner shown on stderr while the main thread blocks.

    Usage:
        with Spinner("Generating image(s)..."):
            response = client.create_images(request)

    Anything written through `Spinner.write` (the log sink does this) clears
    the spinner line first, so log lines and the animation never overlap.
    Nothing is drawn when the stream is not a terminal.
    """

    def __init__(self, message: str = "", stream: Optional[TextIO] = None):
        self.message = message
        self.stream = stream or sys.stderr
        self.enabled = hasattr(self.stream, "isatty") and self.stream.isatty()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._frame = FRAMES[0]

    def set_message(self, message: str):
        with self._lock:
            self.message = message

    def _draw(self):
        self.stream.write(f"{CLEAR_LINE}{BLUE}{self._frame}{RESET} {self.message}")
        self.stream.flush()

    def _clear(self):
        self.stream.write(CLEAR_LINE)
        self.stream.flush()

    def _run(self):
        for frame in itertools.cycle(FRAMES):
            with self._lock:
                self._frame = frame
                self._draw()
            if self._stop.wait(TICK):
                break

    def write(self, text: str):
        """Print a line above the spinner."""
        with self._lock:
            if self.enabled:
                self._clear()
            self.stream.write(text)
            if self.enabled and not self._stop.is_set():
                self._draw()
            else:
                self.stream.flush()

    def start(self) -> "Spinner":
        global _active
        with _active_lock:
            _active = self
        if self.enabled:
            self._thread = threading.Thread(target=self._run, name="imgen-spinner", daemon=True)
            self._thread.start()
        return self

    def stop(self):
        global _active
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        if self.enabled:
            with self._lock:
                self._clear()
        with _active_lock:
            if _active is self:
                _active = None

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()


def write(text: str, stream: Optional[TextIO] = None):
    """Write log output, routing it through the active spinner if there is one."""
    spinner = _active
    if spinner is not None:
        spinner.write(text)
        return
    stream = stream or sys.stderr
    stream.write(text)
    stream.flush()
