"""
Installer events.

The installation engine reports everything it does through these messages.
The progress screen is the only consumer.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum


class StepStatus(Enum):
  """Status of one installation phase."""

  PENDING = "pending"
  RUNNING = "running"
  DONE = "done"
  SKIPPED = "skipped"
  FAILED = "failed"

  @property
  def label(self) -> str:
    return {
      StepStatus.PENDING: "PENDING",
      StepStatus.RUNNING: "RUNNING",
      StepStatus.DONE: "OK",
      StepStatus.SKIPPED: "SKIP",
      StepStatus.FAILED: "FAIL",
    }[self]


@dataclass(frozen=True)
class Log:
  line: str


@dataclass(frozen=True)
class Progress:
  fraction: float


@dataclass(frozen=True)
class StepUpdate:
  index: int
  status: StepStatus
  err: str | None = None


@dataclass(frozen=True)
class Done:
  err: str | None = None


type InstallerEvent = Log | Progress | StepUpdate | Done
type EventSink = Callable[[InstallerEvent], None]
