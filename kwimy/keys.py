"""Single-keystroke terminal input with a bounded wait."""

import os
import select
import sys
import termios
import tty
from collections import deque
from types import TracebackType

UP = "up"
DOWN = "down"
LEFT = "left"
RIGHT = "right"
PAGE_UP = "page_up"
PAGE_DOWN = "page_down"
HOME = "home"
END = "end"
ENTER = "enter"
ESC = "esc"
TAB = "tab"
BACKSPACE = "backspace"
SPACE = "space"
CTRL_C = "ctrl+c"
CTRL_Q = "ctrl+q"
CTRL_U = "ctrl+u"

_ESCAPE_SEQUENCES = {
  "\x1b[A": UP,
  "\x1b[B": DOWN,
  "\x1b[C": RIGHT,
  "\x1b[D": LEFT,
  "\x1bOA": UP,
  "\x1bOB": DOWN,
  "\x1bOC": RIGHT,
  "\x1bOD": LEFT,
  "\x1b[5~": PAGE_UP,
  "\x1b[6~": PAGE_DOWN,
  "\x1b[H": HOME,
  "\x1b[F": END,
  "\x1b[1~": HOME,
  "\x1b[4~": END,
}

_CONTROL_KEYS = {
  "\r": ENTER,
  "\n": ENTER,
  "\t": TAB,
  "\x7f": BACKSPACE,
  "\x08": BACKSPACE,
  " ": SPACE,
  "\x03": CTRL_C,
  "\x11": CTRL_Q,
  "\x15": CTRL_U,
}


def parse_keys(data: str) -> list[str]:
  """
  Decode a chunk read from the terminal into key names.

  Printable characters come back as themselves. Unknown escape sequences
  and control characters are dropped.
  """
  keys: list[str] = []
  i = 0
  while i < len(data):
    ch = data[i]
    if ch == "\x1b":
      match = next((seq for seq in _ESCAPE_SEQUENCES if data.startswith(seq, i)), None)
      if match is not None:
        keys.append(_ESCAPE_SEQUENCES[match])
        i += len(match)
        continue

      if data.startswith("\x1b[", i) or data.startswith("\x1bO", i):
        # Skip an unknown CSI/SS3 sequence up to its final byte
        j = i + 2
        while j < len(data) and not ("@" <= data[j] <= "~"):
          j += 1
        i = j + 1
        continue

      keys.append(ESC)
      i += 1
      continue

    if ch in _CONTROL_KEYS:
      keys.append(_CONTROL_KEYS[ch])
    elif ch.isprintable():
      keys.append(ch)
    i += 1

  return keys


class KeyReader:
  """
  Reads keys from stdin in raw mode.

  Output post-processing stays enabled so Rich can keep writing plain
  newlines. The previous terminal mode is restored on exit.
  """

  def __init__(self, fd: int | None = None) -> None:
    self.fd: int = sys.stdin.fileno() if fd is None else fd
    self._saved: list | None = None
    self._pending: deque[str] = deque()

  def __enter__(self) -> "KeyReader":
    self.start()
    return self

  def __exit__(
    self,
    exc_type: type[BaseException] | None,
    exc: BaseException | None,
    tb: TracebackType | None,
  ) -> None:
    self.stop()

  def start(self) -> None:
    if self._saved is not None or not os.isatty(self.fd):
      return

    self._saved = termios.tcgetattr(self.fd)
    tty.setraw(self.fd)
    mode = termios.tcgetattr(self.fd)
    mode[1] |= termios.OPOST | termios.ONLCR
    termios.tcsetattr(self.fd, termios.TCSANOW, mode)

  def stop(self) -> None:
    if self._saved is None:
      return

    termios.tcsetattr(self.fd, termios.TCSADRAIN, self._saved)
    self._saved = None

  def read_key(self, timeout: float | None = None) -> str | None:
    """Next key, waiting at most `timeout` seconds (forever when None)."""
    if self._pending:
      return self._pending.popleft()

    ready, _, _ = select.select([self.fd], [], [], timeout)
    if not ready:
      return None

    data = os.read(self.fd, 1024).decode("utf-8", errors="ignore")
    self._pending.extend(parse_keys(data))
    return self._pending.popleft() if self._pending else None
