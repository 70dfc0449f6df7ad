"""Small text helpers shared by the wizard screens and the progress screen."""

from kwimy.events import StepStatus

SPINNER_FRAMES = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")
SPINNER_INTERVAL = 0.12

STATUS_ICONS = {
  StepStatus.PENDING: ("·", "dim"),
  StepStatus.DONE: ("✓", "bold green"),
  StepStatus.SKIPPED: ("-", "yellow"),
  StepStatus.FAILED: ("✗", "bold red"),
}


def truncate_to_fit(text: str, max_width: int) -> str:
  """Truncate text to fit within max_width, adding ellipsis if needed."""
  if max_width <= 4:
    return text[: max(max_width, 0)]
  if len(text) <= max_width - 1:
    return text
  return text[: max_width - 4] + "..."


def spinner_frame(elapsed: float) -> str:
  """Spinner glyph for a point in time, advancing every SPINNER_INTERVAL seconds."""
  return SPINNER_FRAMES[int(elapsed / SPINNER_INTERVAL) % len(SPINNER_FRAMES)]


def status_icon(status: StepStatus, spinner_index: int = 0) -> tuple[str, str]:
  """Glyph and style for a step row. Running steps show the spinner."""
  if status is StepStatus.RUNNING:
    return SPINNER_FRAMES[spinner_index % len(SPINNER_FRAMES)], "bold cyan"
  return STATUS_ICONS[status]
