"""
Setup wizard step graph.

The wizard is a fixed sequence of steps. Some steps are guarded: Drivers only
exists when an Nvidia GPU was detected and LuksPassword only when the disk is
encrypted. Navigation in both directions and the position shown in the
summary panel are derived from the same graph, so they can never disagree.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Final

from kwimy.context import SessionState


class Step(Enum):
  NETWORK = "network"
  DRIVERS = "drivers"
  DISK = "disk"
  CONFIRM_DISK = "confirm_disk"
  KEYMAP = "keymap"
  TIMEZONE = "timezone"
  HOSTNAME = "hostname"
  USERNAME = "username"
  USER_PASSWORD = "user_password"
  ENCRYPT_DISK = "encrypt_disk"
  LUKS_PASSWORD = "luks_password"
  SWAP = "swap"
  APPLICATIONS = "applications"
  REVIEW = "review"


type Guard = Callable[[SessionState], bool]


def _always(_state: SessionState) -> bool:
  return True


def _has_nvidia(state: SessionState) -> bool:
  return state.include_drivers


def _encrypting(state: SessionState) -> bool:
  return state.encrypt_disk


@dataclass(frozen=True)
class StepNode:
  """
  One node of the graph.

  `slot` names the summary row the step fills in. Consecutive steps may share
  a slot (Disk and ConfirmDisk both fill "Disk"). Steps without a slot sit
  past the last row.
  """

  step: Step
  slot: str | None
  guard: Guard = _always


STEP_GRAPH: Final[tuple[StepNode, ...]] = (
  StepNode(Step.NETWORK, "Network"),
  StepNode(Step.DRIVERS, "Drivers", _has_nvidia),
  StepNode(Step.DISK, "Disk"),
  StepNode(Step.CONFIRM_DISK, "Disk"),
  StepNode(Step.KEYMAP, "Keymap"),
  StepNode(Step.TIMEZONE, "Timezone"),
  StepNode(Step.HOSTNAME, "Hostname"),
  StepNode(Step.USERNAME, "User"),
  StepNode(Step.USER_PASSWORD, "User"),
  StepNode(Step.ENCRYPT_DISK, "Encryption"),
  StepNode(Step.LUKS_PASSWORD, "Encryption", _encrypting),
  StepNode(Step.SWAP, "Swap"),
  StepNode(Step.APPLICATIONS, None),
  StepNode(Step.REVIEW, None),
)

FIRST_STEP: Final[Step] = STEP_GRAPH[0].step

_POSITIONS: Final[dict[Step, int]] = {node.step: i for i, node in enumerate(STEP_GRAPH)}


def _active(node: StepNode, state: SessionState) -> bool:
  return node.guard(state)


def next_step(step: Step, state: SessionState) -> Step | None:
  """The following step whose guard holds, or None after Review."""
  for node in STEP_GRAPH[_POSITIONS[step] + 1 :]:
    if _active(node, state):
      return node.step
  return None


def previous_step(step: Step, state: SessionState) -> Step | None:
  """The preceding step whose guard holds, or None before Network."""
  for node in reversed(STEP_GRAPH[: _POSITIONS[step]]):
    if _active(node, state):
      return node.step
  return None


def summary_slots(include_drivers: bool) -> list[str]:
  """Ordered summary rows. Only the Drivers row depends on a guard."""
  slots: list[str] = []
  for node in STEP_GRAPH:
    if node.slot is None or node.slot in slots:
      continue
    if node.step is Step.DRIVERS and not include_drivers:
      continue
    slots.append(node.slot)
  return slots


def summary_index(step: Step, include_drivers: bool) -> int:
  """Position of the step in the summary panel. Slot-less steps sit past the last row."""
  slot = STEP_GRAPH[_POSITIONS[step]].slot
  slots = summary_slots(include_drivers)
  if slot is None or slot not in slots:
    return len(slots)
  return slots.index(slot)


# =============================================================================
# Summary panel
# =============================================================================


@dataclass(frozen=True)
class InstallSummary:
  """What the side panel shows: one value per slot, None while unanswered."""

  current_index: int
  rows: tuple[tuple[str, str | None], ...]
  include_drivers: bool

  @property
  def step_count(self) -> int:
    return len(self.rows)


def _encryption_value(state: SessionState) -> str | None:
  if not state.encrypt_disk:
    return "no"
  if not state.luks_password:
    return None
  return "Btrfs (LUKS encrypted)"


def build_install_summary(step: Step, state: SessionState) -> InstallSummary:
  """Project the entire session state into the summary panel."""
  include_drivers = state.include_drivers
  values: dict[str, str | None] = {
    "Network": state.network_label,
    "Drivers": state.nvidia_variant.label if state.nvidia_variant else "Skipped",
    "Disk": state.disk.label if state.disk else None,
    "Keymap": state.keymap,
    "Timezone": state.timezone,
    "Hostname": state.hostname,
    "User": state.username if state.username and state.user_password else None,
    "Encryption": _encryption_value(state),
    "Swap": "yes" if state.swap_enabled else "no",
  }

  rows = tuple((slot, values.get(slot)) for slot in summary_slots(include_drivers))
  return InstallSummary(
    current_index=summary_index(step, include_drivers),
    rows=rows,
    include_drivers=include_drivers,
  )
