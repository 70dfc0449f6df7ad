"""
Full-screen terminal UI.

Every screen is a Rich Layout rendered inside one Live display on the
alternate screen: a title bar, the setup summary on the left, the active
screen on the right and a key hint footer. Keys come from a KeyReader in raw
mode. The Live display is started lazily on the first render, so anything
printed before that still reaches the normal terminal.
"""

from __future__ import annotations

from types import TracebackType
from typing import TYPE_CHECKING

from rich import box
from rich.console import Console, Group, RenderableType
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from kwimy import keys
from kwimy.keys import KeyReader
from kwimy.selection import CATEGORY_TITLES, AppSelectionFlags
from kwimy.status import status_icon, truncate_to_fit
from kwimy.steps import InstallSummary
from kwimy.types import AppChoice, WifiNetwork
from kwimy.wizard import Action, UIResult

if TYPE_CHECKING:
  from kwimy.progress import InstallSession

WIFI_REFRESH_SECONDS = 5.0

COLORS = {"text": "bold blue", "border": "blue", "accent": "cyan"}

QUIT_KEYS = (keys.CTRL_Q, keys.CTRL_C)


def _window(count: int, cursor: int, height: int) -> tuple[int, int]:
  """Visible [start, end) range of a list that keeps the cursor on screen."""
  height = max(1, height)
  if count <= height:
    return 0, count
  start = min(max(0, cursor - height // 2), count - height)
  return start, start + height


def _move(cursor: int, count: int, key: str, page: int) -> int:
  if count == 0:
    return 0
  match key:
    case keys.UP | "k":
      return (cursor - 1) % count
    case keys.DOWN | "j":
      return (cursor + 1) % count
    case keys.PAGE_UP:
      return max(0, cursor - page)
    case keys.PAGE_DOWN:
      return min(count - 1, cursor + page)
    case keys.HOME:
      return 0
    case keys.END:
      return count - 1
  return cursor


class TUI:
  def __init__(self, console: Console | None = None, reader: KeyReader | None = None) -> None:
    self.console: Console = console or Console()
    self.reader: KeyReader = reader or KeyReader()
    self.live: Live | None = None

  def __enter__(self) -> TUI:
    return self

  def __exit__(
    self,
    exc_type: type[BaseException] | None,
    exc: BaseException | None,
    tb: TracebackType | None,
  ) -> None:
    self.close()

  def close(self) -> None:
    if self.live is not None:
      self.live.stop()
      self.live = None
    self.reader.stop()

  def read_key(self, timeout: float | None = None) -> str | None:
    return self.reader.read_key(timeout)

  def _show(self, renderable: RenderableType) -> None:
    if self.live is None:
      self.reader.start()
      self.live = Live(renderable, console=self.console, screen=True, auto_refresh=False)
      self.live.start(refresh=True)
    else:
      self.live.update(renderable, refresh=True)

  @property
  def _body_height(self) -> int:
    # Title bar, footer and panel borders
    return max(3, self.console.size.height - 10)

  # =============================================================================
  # Frame
  # =============================================================================

  def _summary_panel(self, summary: InstallSummary) -> Panel:
    grid = Table.grid(padding=(0, 1))
    grid.add_column(width=1)
    grid.add_column(style="bold")
    grid.add_column()

    for i, (slot, value) in enumerate(summary.rows):
      if i == summary.current_index:
        marker, style = "›", COLORS["accent"]
      elif value is not None and i < summary.current_index:
        marker, style = "✓", "green"
      else:
        marker, style = " ", "dim"
      grid.add_row(Text(marker, style=style), Text(slot, style=style), Text(value or "", style="dim"))

    step = min(summary.current_index + 1, summary.step_count)
    return Panel(
      grid,
      title="Setup",
      subtitle=f"{step}/{summary.step_count}",
      border_style=COLORS["border"],
      box=box.SQUARE,
      title_align="left",
    )

  def _frame(self, title: str, body: RenderableType, footer: str, summary: InstallSummary | None = None) -> Layout:
    layout = Layout()
    layout.split_column(
      Layout(name="header", size=3),
      Layout(name="main", ratio=1),
      Layout(name="footer", size=1),
    )

    header = Panel(
      Text(title, style=COLORS["text"]),
      border_style=COLORS["border"],
      box=box.SQUARE,
      title="kwimy",
      title_align="left",
      padding=(0, 1),
    )
    layout["header"].update(header)
    layout["footer"].update(Text(footer, style="dim"))

    content = Panel(body, border_style=COLORS["border"], box=box.SQUARE, padding=(0, 1))
    if summary is None:
      layout["main"].update(content)
    else:
      layout["main"].split_row(Layout(name="summary", size=40), Layout(name="content", ratio=1))
      layout["summary"].update(self._summary_panel(summary))
      layout["content"].update(content)

    return layout

  @staticmethod
  def _info(lines: list[str] | None, style: str = "") -> list[Text]:
    return [Text(line, style=style) for line in lines or []]

  # =============================================================================
  # Wizard screens
  # =============================================================================

  def select(
    self, title: str, items: list[str], initial: int, summary: InstallSummary, info: list[str] | None = None
  ) -> UIResult:
    """Single choice list. Typing filters the items, Esc clears the filter or goes back."""
    query = ""
    cursor = initial if 0 <= initial < len(items) else 0

    while True:
      matches = [i for i, item in enumerate(items) if query.lower() in item.lower()]
      position = matches.index(cursor) if cursor in matches else 0
      if matches:
        cursor = matches[position]

      height = self._body_height - len(info or []) - 2
      start, end = _window(len(matches), position, height)
      rows: list[Text] = []
      for i in matches[start:end]:
        if i == cursor:
          rows.append(Text(f"› {items[i]}", style=f"reverse {COLORS['accent']}"))
        else:
          rows.append(Text(f"  {items[i]}"))
      if not matches:
        rows.append(Text("No matches", style="dim"))

      body = Group(*self._info(info), Text(f"Filter: {query}", style="dim"), *rows)
      self._show(self._frame(title, body, "↑/↓ move · type to filter · Enter select · Esc back · Ctrl+Q quit", summary))

      key = self.read_key()
      if key is None:
        continue
      if key in QUIT_KEYS:
        return UIResult(Action.QUIT)

      match key:
        case keys.ENTER:
          if matches:
            return UIResult(Action.SUBMIT, cursor)
        case keys.ESC:
          if not query:
            return UIResult(Action.BACK)
          query = ""
        case keys.BACKSPACE:
          query = query[:-1]
        case keys.CTRL_U:
          query = ""
        case keys.SPACE:
          query += " "
        case keys.UP | keys.DOWN | keys.PAGE_UP | keys.PAGE_DOWN | keys.HOME | keys.END:
          if matches:
            cursor = matches[_move(position, len(matches), key, height)]
        case _ if len(key) == 1:
          query += key

  def confirm(self, title: str, warning: list[str], info: list[str], summary: InstallSummary) -> UIResult:
    choice = 0
    while True:
      options = Text()
      for i, label in enumerate(("Yes", "No")):
        style = f"reverse {COLORS['accent']}" if i == choice else ""
        _ = options.append(f" {label} ", style=style)
        _ = options.append("  ")

      body = Group(*self._info(warning, "bold red"), *self._info(info), Text(""), options)
      self._show(self._frame(title, body, "←/→ choose · y/n · Enter confirm · Esc back · Ctrl+Q quit", summary))

      key = self.read_key()
      if key is None:
        continue
      if key in QUIT_KEYS:
        return UIResult(Action.QUIT)

      match key:
        case keys.LEFT | keys.RIGHT | keys.TAB | keys.UP | keys.DOWN:
          choice = 1 - choice
        case "y" | "Y":
          return UIResult(Action.YES)
        case "n" | "N":
          return UIResult(Action.NO)
        case keys.ENTER:
          return UIResult(Action.YES if choice == 0 else Action.NO)
        case keys.ESC:
          return UIResult(Action.BACK)

  def text_input(
    self,
    title: str,
    info: list[str],
    summary: InstallSummary,
    secret: bool = False,
    initial: str = "",
    error: str | None = None,
  ) -> UIResult:
    value = initial
    while True:
      shown = "•" * len(value) if secret else value
      field = Text("> ", style=COLORS["accent"])
      _ = field.append(shown)
      _ = field.append("█", style="blink")

      lines: list[RenderableType] = [*self._info(info), Text(""), field]
      if error:
        lines.extend([Text(""), Text(error, style="bold red")])

      self._show(self._frame(title, Group(*lines), "Enter submit · Ctrl+U clear · Esc back · Ctrl+Q quit", summary))

      key = self.read_key()
      if key is None:
        continue
      if key in QUIT_KEYS:
        return UIResult(Action.QUIT)

      match key:
        case keys.ENTER:
          return UIResult(Action.SUBMIT, value)
        case keys.ESC:
          return UIResult(Action.BACK)
        case keys.CTRL_U:
          value = ""
        case keys.BACKSPACE:
          value = value[:-1]
        case keys.SPACE:
          value += " "
        case _ if len(key) == 1:
          value += key

  def show_status(self, title: str, lines: list[str], summary: InstallSummary) -> None:
    self._show(self._frame(title, Group(*self._info(lines)), "Please wait · Ctrl+Q quit", summary))

  def select_applications(
    self, flags: AppSelectionFlags, catalogue: dict[str, list[AppChoice]], summary: InstallSummary
  ) -> UIResult:
    """Checkbox list grouped by category. Only one compositor can be ticked."""
    entries = [(category, i) for category in CATEGORY_TITLES for i in range(len(catalogue.get(category, [])))]
    cursor = 0

    while True:
      rows: list[Text] = []
      for category, title in CATEGORY_TITLES.items():
        choices = catalogue.get(category, [])
        if not choices:
          continue
        rows.append(Text(title, style="bold"))
        ticked = flags.get(category)
        for i, choice in enumerate(choices):
          mark = "[x]" if i < len(ticked) and ticked[i] else "[ ]"
          style = f"reverse {COLORS['accent']}" if entries and entries[cursor] == (category, i) else ""
          rows.append(Text(f"  {mark} {choice['label']}", style=style))

      footer = f"{flags.count()} selected · Space toggle · Enter continue · Esc back · Ctrl+Q quit"
      self._show(self._frame("Applications", Group(*rows), footer, summary))

      key = self.read_key()
      if key is None:
        continue
      if key in QUIT_KEYS:
        return UIResult(Action.QUIT)

      match key:
        case keys.SPACE if entries:
          category, index = entries[cursor]
          if category == "compositors" and not flags.get(category)[index]:
            for other, ticked in enumerate(flags.get(category)):
              if ticked:
                flags.toggle(category, other)
          flags.toggle(category, index)
        case keys.ENTER:
          return UIResult(Action.SUBMIT, flags)
        case keys.ESC:
          return UIResult(Action.BACK)
        case keys.UP | keys.DOWN | keys.PAGE_UP | keys.PAGE_DOWN | keys.HOME | keys.END | "j" | "k":
          cursor = _move(cursor, len(entries), key, 5)

  def wifi_selector(
    self,
    networks: list[WifiNetwork],
    status: str | None,
    wifi_connected: bool,
    internet_ready: bool,
    summary: InstallSummary,
  ) -> UIResult:
    """Network list that refreshes itself when left idle."""
    cursor = 0
    while True:
      table = Table(box=box.SIMPLE_HEAD, expand=True)
      table.add_column("SSID", ratio=3)
      table.add_column("Signal", justify="right")
      table.add_column("Security")

      start, end = _window(len(networks), cursor, self._body_height - 6)
      for i in range(start, end):
        network = networks[i]
        ssid = f"{'* ' if network.in_use else ''}{network.ssid}"
        style = f"reverse {COLORS['accent']}" if i == cursor else ""
        table.add_row(ssid, f"{network.signal}%", network.security or "open", style=style)

      if internet_ready:
        state = Text("Internet connection available. Press c to continue.", style="bold green")
      elif wifi_connected:
        state = Text("Connected to Wi-Fi, waiting for internet access...", style="yellow")
      else:
        state = Text("Select a network to connect.", style="dim")

      lines: list[RenderableType] = [state]
      if status:
        lines.append(Text(status, style="bold red"))
      lines.append(table if networks else Text("No networks found.", style="dim"))

      footer = "↑/↓ move · Enter connect · r rescan · c continue · Ctrl+Q quit"
      self._show(self._frame("Wi-Fi", Group(*lines), footer, summary))

      key = self.read_key(WIFI_REFRESH_SECONDS)
      if key is None:
        return UIResult(Action.REFRESH)
      if key in QUIT_KEYS:
        return UIResult(Action.QUIT)

      match key:
        case keys.ENTER if networks:
          return UIResult(Action.SUBMIT, cursor)
        case "r" | "R":
          return UIResult(Action.RESCAN)
        case "c" | "C":
          return UIResult(Action.CONTINUE)
        case keys.UP | keys.DOWN | keys.PAGE_UP | keys.PAGE_DOWN | keys.HOME | keys.END | "j" | "k":
          cursor = _move(cursor, len(networks), key, 5)

  def network_required(self, summary: InstallSummary) -> UIResult:
    body = Group(
      Text("An internet connection is required.", style="bold red"),
      Text("No Wi-Fi device was found. Plug in an ethernet cable and press Enter to retry."),
    )
    self._show(self._frame("Network", body, "Enter retry · Ctrl+Q quit", summary))

    while True:
      key = self.read_key()
      if key in QUIT_KEYS or key in ("q", "Q"):
        return UIResult(Action.QUIT)
      if key in (keys.ENTER, "r", "R"):
        return UIResult(Action.RETRY)

  def review(
    self, system_items: list[tuple[str, str]], package_items: list[tuple[str, str]], selected_packages: int
  ) -> UIResult:
    def section(title: str, items: list[tuple[str, str]]) -> Table:
      table = Table(title=title, title_style="bold", title_justify="left", box=box.SIMPLE, show_header=False)
      table.add_column(style=COLORS["accent"])
      table.add_column()
      for label, value in items:
        table.add_row(label, value)
      return table

    body = Group(
      section("System", system_items),
      section(f"Packages ({selected_packages} selected)", package_items),
      Text("The selected disk will be erased when you confirm.", style="bold red"),
    )
    self._show(self._frame("Review", body, "Enter install · e edit · Esc back · Ctrl+Q quit"))

    while True:
      key = self.read_key()
      if key in QUIT_KEYS:
        return UIResult(Action.QUIT)
      match key:
        case keys.ENTER:
          return UIResult(Action.SUBMIT)
        case keys.ESC:
          return UIResult(Action.BACK)
        case "e" | "E":
          return UIResult(Action.EDIT)

  # =============================================================================
  # Progress screen
  # =============================================================================

  def render_progress(self, session: InstallSession) -> None:
    steps = Table.grid(padding=(0, 1))
    steps.add_column(width=1)
    steps.add_column()
    for entry in session.steps:
      icon, style = status_icon(entry.status, session.spinner_index)
      label = Text(entry.name)
      if entry.err:
        _ = label.append(f" ({entry.err})", style="red")
      steps.add_row(Text(icon, style=style), label)

    width = max(10, self.console.size.width - 6)
    log_height = max(1, self.console.size.height - len(session.steps) - 12)
    log_lines = [Text(truncate_to_fit(line, width), style="dim") for line in session.history.tail(log_height)]

    body = Group(
      steps,
      Text(""),
      ProgressBar(total=1.0, completed=session.progress, width=width),
      Text(f"{session.progress * 100:.0f}%", style="bold"),
      Panel(Group(*log_lines), title="Log", title_align="left", box=box.SQUARE, border_style="dim"),
    )

    if not session.done:
      title, footer = "Installing...", "Ctrl+Q quit (the installation keeps running)"
    elif session.error is None:
      title, footer = "Installation complete", "r reboot · s power off · Ctrl+Q quit"
    else:
      title, footer = f"Installation failed: {session.error}", "Ctrl+Q quit"

    self._show(self._frame(title, body, footer))
