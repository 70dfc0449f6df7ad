"""
Install session pipeline.

The installation engine runs on one background thread and reports through a
queue. The foreground loop renders, polls the keyboard with a bounded wait and
drains every queued event before the next render.
"""

from __future__ import annotations

import logging
import os
import queue
import subprocess
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from kwimy import keys
from kwimy.events import Done, EventSink, InstallerEvent, Log, Progress, StepStatus, StepUpdate
from kwimy.logbook import LOG_FILE_PATH, LogHistory, LogSink
from kwimy.status import SPINNER_FRAMES, SPINNER_INTERVAL
from kwimy.types import InstallConfig

logger = logging.getLogger(__name__)

INPUT_POLL_INTERVAL = 0.1

FAILED_PACKAGES_MARKER = "/mnt/var/log/kwimy-failed-packages.txt"
FAILED_PACKAGES_NOTICE = "Optional packages failed. See /var/log/kwimy-failed-packages.txt on the installed system."

type Engine = Callable[[InstallConfig, EventSink], None]


@dataclass
class StepEntry:
  name: str
  status: StepStatus = StepStatus.PENDING
  err: str | None = None


@dataclass
class InstallSession:
  """Everything the progress screen shows. Mutated only by the foreground loop."""

  steps: list[StepEntry]
  history: LogHistory = field(default_factory=LogHistory)
  sink: LogSink | None = None
  progress: float = 0.0
  spinner_index: int = 0
  done: bool = False
  error: str | None = None

  @classmethod
  def start(cls, step_names: list[str], sink: LogSink | None = None) -> InstallSession:
    session = cls([StepEntry(name) for name in step_names], sink=sink)
    session.history.push("Starting kwimy installer...")
    if sink is not None and sink.active:
      session.log(f"Logging to {sink.path}")
    return session

  def log(self, line: str) -> None:
    self.history.push(line)
    self.write_sink(line)

  def write_sink(self, line: str) -> None:
    if self.sink is not None:
      self.sink.write(line)

  def advance_spinner(self) -> None:
    self.spinner_index = (self.spinner_index + 1) % len(SPINNER_FRAMES)


def handle_event(session: InstallSession, event: InstallerEvent, marker_path: str = FAILED_PACKAGES_MARKER) -> None:
  """Apply one engine event to the session."""
  match event:
    case Log(line=line):
      session.log(line)

    case Progress(fraction=fraction):
      session.progress = min(max(fraction, 0.0), 1.0)

    case StepUpdate(index=index, status=status, err=err):
      if not 0 <= index < len(session.steps):
        logger.debug("ignoring update for unknown step %d", index)
        return

      entry = session.steps[index]
      entry.status = status
      entry.err = err
      session.write_sink(f"STEP {entry.name}: {status.label}")
      if err is not None:
        session.log(f"ERROR: {err}")

    case Done(err=None):
      session.done = True
      session.error = None
      session.write_sink("DONE: ok")
      if os.path.exists(marker_path):
        session.log(FAILED_PACKAGES_NOTICE)

    case Done(err=err):
      session.done = True
      session.error = err
      session.write_sink(f"DONE: {err}")


class FinalAction(Enum):
  REBOOT = "reboot"
  POWEROFF = "poweroff"


def perform_final_action(action: FinalAction | None, dry: bool = False) -> None:
  if action is None:
    return

  command = ["systemctl", action.value]
  if dry:
    logger.info("dry run, not running %s", " ".join(command))
    return

  _ = subprocess.run(command, check=False)


class ProgressScreen(Protocol):
  def render_progress(self, session: InstallSession) -> None: ...

  def read_key(self, timeout: float | None = None) -> str | None: ...


class InstallProgress:
  """
  Runs the engine on a worker thread and drives the progress screen.

  The worker is not a daemon and is never cancelled. Quitting the screen
  returns control to the caller while the installation keeps running, and
  the interpreter waits for it before exiting.
  """

  def __init__(
    self,
    config: InstallConfig,
    engine: Engine,
    step_names: list[str],
    log_path: str = LOG_FILE_PATH,
    marker_path: str = FAILED_PACKAGES_MARKER,
    clock: Callable[[], float] = time.monotonic,
  ) -> None:
    self.config = config
    self.engine = engine
    self.marker_path = marker_path
    self.clock = clock
    self.events: queue.Queue[InstallerEvent] = queue.Queue()
    self.session = InstallSession.start(step_names, LogSink(log_path))
    self.worker: threading.Thread | None = None
    self.final_action: FinalAction | None = None
    self.quit_requested: bool = False

  def start_worker(self) -> threading.Thread:
    def work() -> None:
      try:
        self.engine(self.config, self.events.put)
      except Exception as e:
        logger.exception("installation failed")
        self.events.put(Done(str(e) or e.__class__.__name__))

    self.worker = threading.Thread(target=work, name="kwimy-installer", daemon=False)
    self.worker.start()
    return self.worker

  def drain(self) -> int:
    """Apply every queued event. Returns how many were handled."""
    handled = 0
    while True:
      try:
        event = self.events.get_nowait()
      except queue.Empty:
        return handled
      handle_event(self.session, event, self.marker_path)
      handled += 1

  def handle_key(self, key: str | None) -> bool:
    """React to one key. Returns True when the loop should exit."""
    if key == keys.CTRL_Q:
      self.quit_requested = True
      return True

    if not self.session.done or self.session.error is not None:
      return False

    if key in ("r", "R"):
      self.final_action = FinalAction.REBOOT
      return True
    if key in ("s", "S"):
      self.final_action = FinalAction.POWEROFF
      return True
    return False

  def tick_spinner(self, last_tick: float) -> float:
    now = self.clock()
    if now - last_tick >= SPINNER_INTERVAL:
      self.session.advance_spinner()
      return now
    return last_tick

  def run(self, screen: ProgressScreen) -> FinalAction | None:
    if self.worker is None:
      _ = self.start_worker()

    last_tick = self.clock()
    try:
      while True:
        screen.render_progress(self.session)
        if self.handle_key(screen.read_key(INPUT_POLL_INTERVAL)):
          break
        _ = self.drain()
        last_tick = self.tick_spinner(last_tick)
    finally:
      if self.session.sink is not None:
        self.session.sink.close()

    return self.final_action
