"""
Install log: a bounded in-memory history plus a persisted copy.

The history feeds the log pane of the progress screen. The sink mirrors
every line to a plain text file that is truncated at the start of each run.
Writing to the sink is best effort; a broken disk never stops the UI.
"""

import logging
from collections import deque
from collections.abc import Iterator

LOG_CAPACITY = 200
LOG_FILE_PATH = "/tmp/kwimy-installer.log"
SINK_LOGGER = "kwimy.install_log"


class LogHistory:
  """FIFO ring buffer of log lines. The oldest line is evicted once full."""

  def __init__(self, capacity: int = LOG_CAPACITY, lines: list[str] | None = None) -> None:
    self._lines: deque[str] = deque(lines or (), maxlen=capacity)

  @property
  def capacity(self) -> int:
    return self._lines.maxlen or 0

  def push(self, line: str) -> None:
    self._lines.append(line)

  def tail(self, count: int) -> list[str]:
    if count <= 0:
      return []
    return list(self._lines)[-count:]

  def __iter__(self) -> Iterator[str]:
    return iter(self._lines)

  def __len__(self) -> int:
    return len(self._lines)


class _SilentFileHandler(logging.FileHandler):
  def handleError(self, record: logging.LogRecord) -> None:
    pass


class LogSink:
  """
  Line-oriented persisted log.

  Each record is written as-is and flushed immediately. If the file cannot be
  opened the sink stays inactive and every write is a no-op. Only the newest
  sink writes: opening one detaches the handler of the one before it.
  """

  def __init__(self, path: str = LOG_FILE_PATH) -> None:
    self.path: str = path
    self._logger: logging.Logger = logging.getLogger(SINK_LOGGER)
    self._logger.setLevel(logging.INFO)
    self._logger.propagate = False
    self._handler: logging.Handler | None = None

    for previous in list(self._logger.handlers):
      self._logger.removeHandler(previous)
      previous.close()

    try:
      handler = _SilentFileHandler(path, mode="w", encoding="utf-8")
    except OSError:
      return

    handler.setFormatter(logging.Formatter("%(message)s"))
    self._logger.addHandler(handler)
    self._handler = handler

  @property
  def active(self) -> bool:
    return self._handler is not None and self._handler in self._logger.handlers

  def write(self, line: str) -> None:
    if self.active:
      self._logger.info(line)

  def close(self) -> None:
    if self._handler is None:
      return

    self._logger.removeHandler(self._handler)
    self._handler.close()
    self._handler = None
