"""
Setup wizard controller.

Runs one handler per step over a single SessionState. Each handler renders
through the WizardUI, interprets the user's action and returns an Outcome:
advance to a step, quit, or finish. Rejected input never fails; the same
step is simply entered again.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from rich.console import Console

from kwimy.context import FALLBACK_HOSTNAME, SessionState
from kwimy.network import ConnectStatus, NetworkConnector
from kwimy.selection import (
  CATEGORY_TITLES,
  AppSelectionFlags,
  format_gpu_summary,
  labels_for_category,
  load_catalogue,
  selection_from_app_flags,
)
from kwimy.status import spinner_frame
from kwimy.steps import FIRST_STEP, InstallSummary, Step, build_install_summary, next_step, previous_step
from kwimy.types import AppChoice, DiskInfo, InstallConfig, NvidiaVariant, RuntimeConfig, WifiNetwork
from kwimy.utils import (
  append_timezone_detect_log,
  detect_gpu_vendors,
  detect_timezone_geoip,
  detect_timezone_local,
  find_index,
  list_disks,
  load_base_packages,
  load_defaults,
  load_keymaps,
  load_timezones,
)
from kwimy.validations import is_utc_variant, validate_hostname, validate_password, validate_username

console = Console()

SKIPPED_NETWORK_LABEL = "Skipped (dev)"
CONNECTED_LABEL = "Connected"
SKIP_DRIVERS_LABEL = "Skip (keep the open-source nouveau driver)"


class Action(Enum):
  SUBMIT = "submit"
  BACK = "back"
  QUIT = "quit"
  YES = "yes"
  NO = "no"
  RETRY = "retry"
  RESCAN = "rescan"
  REFRESH = "refresh"
  CONTINUE = "continue"
  EDIT = "edit"


@dataclass(frozen=True)
class UIResult:
  action: Action
  value: Any = None


class WizardUI(Protocol):
  """Everything the wizard needs from the screen. Blocking calls wait for a key."""

  def select(
    self, title: str, items: list[str], initial: int, summary: InstallSummary, info: list[str] | None = None
  ) -> UIResult: ...

  def confirm(self, title: str, warning: list[str], info: list[str], summary: InstallSummary) -> UIResult: ...

  def text_input(
    self,
    title: str,
    info: list[str],
    summary: InstallSummary,
    secret: bool = False,
    initial: str = "",
    error: str | None = None,
  ) -> UIResult: ...

  def show_status(self, title: str, lines: list[str], summary: InstallSummary) -> None: ...

  def select_applications(
    self, flags: AppSelectionFlags, catalogue: dict[str, list[AppChoice]], summary: InstallSummary
  ) -> UIResult: ...

  def wifi_selector(
    self,
    networks: list[WifiNetwork],
    status: str | None,
    wifi_connected: bool,
    internet_ready: bool,
    summary: InstallSummary,
  ) -> UIResult: ...

  def network_required(self, summary: InstallSummary) -> UIResult: ...

  def review(
    self, system_items: list[tuple[str, str]], package_items: list[tuple[str, str]], selected_packages: int
  ) -> UIResult: ...


class OutcomeKind(Enum):
  ADVANCE = "advance"
  QUIT = "quit"
  FINISH = "finish"


@dataclass(frozen=True)
class Outcome:
  kind: OutcomeKind
  step: Step | None = None

  @classmethod
  def advance(cls, step: Step) -> Outcome:
    return cls(OutcomeKind.ADVANCE, step)

  @classmethod
  def quit(cls) -> Outcome:
    return cls(OutcomeKind.QUIT)

  @classmethod
  def finish(cls) -> Outcome:
    return cls(OutcomeKind.FINISH)


class Wizard:
  """Finite state machine over the setup steps."""

  def __init__(
    self,
    ui: WizardUI,
    state: SessionState,
    connector: NetworkConnector,
    disks: list[DiskInfo],
    keymaps: list[str],
    timezones: list[str],
    runtime: RuntimeConfig,
    detect_timezone: Callable[[list[str]], str | None] = detect_timezone_geoip,
    timezone_log: Callable[[str], None] = append_timezone_detect_log,
  ) -> None:
    self.ui = ui
    self.state = state
    self.connector = connector
    self.disks = disks
    self.keymaps = keymaps or ["us"]
    self.timezones = timezones or ["UTC"]
    self.runtime = runtime
    self.detect_timezone = detect_timezone
    self.timezone_log = timezone_log
    self.notice: str | None = None
    self.handlers: dict[Step, Callable[[], Outcome]] = {
      Step.NETWORK: self.network_step,
      Step.DRIVERS: self.drivers_step,
      Step.DISK: self.disk_step,
      Step.CONFIRM_DISK: self.confirm_disk_step,
      Step.KEYMAP: self.keymap_step,
      Step.TIMEZONE: self.timezone_step,
      Step.HOSTNAME: self.hostname_step,
      Step.USERNAME: self.username_step,
      Step.USER_PASSWORD: self.user_password_step,
      Step.ENCRYPT_DISK: self.encrypt_disk_step,
      Step.LUKS_PASSWORD: self.luks_password_step,
      Step.SWAP: self.swap_step,
      Step.APPLICATIONS: self.applications_step,
      Step.REVIEW: self.review_step,
    }

  def run(self, start: Step = FIRST_STEP) -> bool:
    """Run until the user finishes (True) or quits (False)."""
    step = start
    while True:
      outcome = self.run_step(step)
      if outcome.kind is OutcomeKind.QUIT:
        return False
      if outcome.kind is OutcomeKind.FINISH:
        return True
      assert outcome.step is not None
      step = outcome.step

  def run_step(self, step: Step) -> Outcome:
    return self.handlers[step]()

  # Navigation helpers

  def forward(self, step: Step) -> Outcome:
    following = next_step(step, self.state)
    return Outcome.finish() if following is None else Outcome.advance(following)

  def back(self, step: Step) -> Outcome:
    return Outcome.advance(previous_step(step, self.state) or step)

  def summary(self, step: Step) -> InstallSummary:
    return build_install_summary(step, self.state)

  def take_notice(self) -> str | None:
    notice, self.notice = self.notice, None
    return notice

  # =============================================================================
  # Network and drivers
  # =============================================================================

  def _refresh_network_label(self, fallback: str = CONNECTED_LABEL) -> None:
    if self.state.network_label is None:
      self.state.network_label = self.connector.connection_label() or fallback

  def network_step(self) -> Outcome:
    if self.runtime.skip_network:
      self.state.network_label = SKIPPED_NETWORK_LABEL
      return self.forward(Step.NETWORK)

    editing = self.connector.consume_reentry()
    if not editing and self.connector.has_internet():
      self._refresh_network_label()
      return self.forward(Step.NETWORK)

    if not self.connector.has_device():
      result = self.ui.network_required(self.summary(Step.NETWORK))
      if result.action is Action.QUIT:
        return Outcome.quit()
      return Outcome.advance(Step.NETWORK)

    status: str | None = None
    while True:
      internet_ready = self.connector.has_internet()
      if internet_ready:
        self._refresh_network_label()

      self.ui.show_status("Wi-Fi", ["Searching for networks..."], self.summary(Step.NETWORK))
      networks, scan_error = self.connector.scan()
      if scan_error is not None:
        status = scan_error

      wifi_connected = self.connector.is_wifi_connected(networks)
      result = self.ui.wifi_selector(networks, status, wifi_connected, internet_ready, self.summary(Step.NETWORK))

      match result.action:
        case Action.SUBMIT:
          index = result.value
          if not isinstance(index, int) or not 0 <= index < len(networks):
            continue

          joined, status, quit_requested = self._join_network(networks[index], status)
          if quit_requested:
            return Outcome.quit()
          if not joined:
            continue

          if self.connector.has_internet():
            self.state.network_label = self.connector.connection_label() or networks[index].ssid
            status = None
          else:
            status = "Connected to Wi-Fi but no internet access."

        case Action.RESCAN:
          status = None

        case Action.CONTINUE:
          if internet_ready:
            return self.forward(Step.NETWORK)

        case Action.QUIT:
          return Outcome.quit()

        case _:
          pass

  def _join_network(self, network: WifiNetwork, status: str | None) -> tuple[bool, str | None, bool]:
    """
    Connect to one network, prompting for a password when it is secured.

    Returns (connected, status message, quit requested).
    """
    if network.is_open:
      result = self.connector.connect(network.ssid, None, self._connecting_tick(network.ssid))
      if result.ok:
        return True, status, False
      if result.status is ConnectStatus.FAILED:
        return False, result.message, False
      return False, "Connection failed. Please try again.", False

    password_error: str | None = None
    while True:
      info = [f'Enter password for "{network.ssid}".', "Ctrl+U clears the input, Esc goes back."]
      if password_error is None:
        info.append("Press Enter to connect.")

      answer = self.ui.text_input(
        "Wi-Fi password", info, self.summary(Step.NETWORK), secret=True, error=password_error
      )
      if answer.action is Action.QUIT:
        return False, status, True
      if answer.action is Action.BACK:
        return False, status, False

      password = str(answer.value or "")
      if not password:
        continue

      result = self.connector.connect(network.ssid, password, self._connecting_tick(network.ssid))
      match result.status:
        case ConnectStatus.CONNECTED:
          return True, status, False
        case ConnectStatus.AUTH_FAILED | ConnectStatus.TIMEOUT:
          password_error = result.message
        case ConnectStatus.FAILED:
          return False, result.message, False

  def _connecting_tick(self, ssid: str) -> Callable[[str, float], None]:
    def tick(device_state: str, elapsed: float) -> None:
      line = f"Connecting to {ssid}... {spinner_frame(elapsed)} ({device_state})"
      self.ui.show_status("Wi-Fi", [line], self.summary(Step.NETWORK))

    return tick

  def drivers_step(self) -> Outcome:
    variants = list(NvidiaVariant)
    items = [variant.label for variant in variants] + [SKIP_DRIVERS_LABEL]
    current = self.state.nvidia_variant
    initial = variants.index(current) if current is not None else 0

    result = self.ui.select(
      "NVIDIA drivers",
      items,
      initial,
      self.summary(Step.DRIVERS),
      info=["An NVIDIA GPU was detected. Pick a proprietary driver or skip."],
    )
    match result.action:
      case Action.SUBMIT:
        index = int(result.value)
        self.state.nvidia_variant = variants[index] if index < len(variants) else None
        return self.forward(Step.DRIVERS)
      case Action.BACK:
        if self.connector.has_device():
          self.connector.request_reentry()
        return self.back(Step.DRIVERS)
      case _:
        return Outcome.quit()

  # =============================================================================
  # Disk, keymap and timezone
  # =============================================================================

  def disk_step(self) -> Outcome:
    labels = [disk.label for disk in self.disks]
    initial = self.disks.index(self.state.disk) if self.state.disk in self.disks else 0

    result = self.ui.select("Select installation disk", labels, initial, self.summary(Step.DISK))
    match result.action:
      case Action.SUBMIT:
        self.state.disk = self.disks[int(result.value)]
        return self.forward(Step.DISK)
      case Action.BACK:
        if not self.state.include_drivers:
          self.connector.request_reentry()
        return self.back(Step.DISK)
      case _:
        return Outcome.quit()

  def confirm_disk_step(self) -> Outcome:
    disk = self.state.disk
    if disk is None:
      return Outcome.advance(Step.DISK)

    result = self.ui.confirm(
      "Confirm disk erase",
      ["This will ERASE the selected disk:", f"  {disk.label}"],
      [
        "All data on this disk will be lost. This action cannot be undone.",
        "Choose Yes to continue or No to go back",
      ],
      self.summary(Step.CONFIRM_DISK),
    )
    match result.action:
      case Action.YES:
        return self.forward(Step.CONFIRM_DISK)
      case Action.NO | Action.BACK:
        return self.back(Step.CONFIRM_DISK)
      case _:
        return Outcome.quit()

  def keymap_step(self) -> Outcome:
    initial = find_index(self.keymaps, self.state.keymap) or 0

    result = self.ui.select("Keyboard layout", self.keymaps, initial, self.summary(Step.KEYMAP))
    match result.action:
      case Action.SUBMIT:
        self.state.keymap = self.keymaps[int(result.value)]
        return self.forward(Step.KEYMAP)
      case Action.BACK:
        return self.back(Step.KEYMAP)
      case _:
        return Outcome.quit()

  def timezone_step(self) -> Outcome:
    if not self.state.timezone or is_utc_variant(self.state.timezone):
      if not self.runtime.skip_network and not self.runtime.offline_only:
        self.ui.show_status("Timezone", ["Detecting timezone..."], self.summary(Step.TIMEZONE))
        self.timezone_log("detect_timezone: retry at timezone step")
        detected = self.detect_timezone(self.timezones)
        if detected:
          self.state.timezone = detected

    initial = find_index(self.timezones, self.state.timezone) or 0

    result = self.ui.select("Timezone", self.timezones, initial, self.summary(Step.TIMEZONE))
    match result.action:
      case Action.SUBMIT:
        self.state.timezone = self.timezones[int(result.value)]
        return self.forward(Step.TIMEZONE)
      case Action.BACK:
        return self.back(Step.TIMEZONE)
      case _:
        return Outcome.quit()

  # =============================================================================
  # Identity
  # =============================================================================

  def hostname_step(self) -> Outcome:
    result = self.ui.text_input(
      "Hostname",
      [
        "Letters, digits and hyphens, up to 63 characters.",
        f"Leave empty to use {FALLBACK_HOSTNAME}.",
      ],
      self.summary(Step.HOSTNAME),
      initial=self.state.hostname,
      error=self.take_notice(),
    )
    match result.action:
      case Action.SUBMIT:
        value = str(result.value or "").strip()
        if not value:
          self.state.hostname = FALLBACK_HOSTNAME
          return self.forward(Step.HOSTNAME)
        if validate_hostname(value):
          self.state.hostname = value
          return self.forward(Step.HOSTNAME)
        self.notice = "Invalid hostname - use letters, digits and hyphens (1-63 characters)."
        return Outcome.advance(Step.HOSTNAME)
      case Action.BACK:
        return self.back(Step.HOSTNAME)
      case _:
        return Outcome.quit()

  def username_step(self) -> Outcome:
    result = self.ui.text_input(
      "Username",
      ["Start with a lowercase letter, then lowercase letters, digits, '_' or '-'."],
      self.summary(Step.USERNAME),
      initial=self.state.username,
      error=self.take_notice(),
    )
    match result.action:
      case Action.SUBMIT:
        value = str(result.value or "").strip()
        if validate_username(value):
          self.state.username = value
          return self.forward(Step.USERNAME)
        self.notice = "Invalid username - it must start with a lowercase letter and cannot be root."
        return Outcome.advance(Step.USERNAME)
      case Action.BACK:
        return self.back(Step.USERNAME)
      case _:
        return Outcome.quit()

  def _confirmed_secret(self, step: Step, title: str, noun: str) -> tuple[Outcome | None, str]:
    """
    Ask for a secret twice.

    Returns (outcome, value): outcome is set when the step must not store
    the value (back, quit, empty entry or mismatch).
    """
    first = self.ui.text_input(
      title,
      [f"Enter the {noun}."],
      self.summary(step),
      secret=True,
      error=self.take_notice(),
    )
    if first.action is Action.BACK:
      return self.back(step), ""
    if first.action is not Action.SUBMIT:
      return Outcome.quit(), ""

    value = str(first.value or "")
    if not validate_password(value):
      return Outcome.advance(step), ""

    second = self.ui.text_input(
      f"Confirm {noun}",
      [f"Re-enter the {noun} to confirm"],
      self.summary(step),
      secret=True,
    )
    if second.action is Action.BACK:
      return Outcome.advance(step), ""
    if second.action is not Action.SUBMIT:
      return Outcome.quit(), ""

    if second.value != value:
      self.notice = f"The {noun}s do not match. Please try again."
      return Outcome.advance(step), ""

    return None, value

  def user_password_step(self) -> Outcome:
    outcome, value = self._confirmed_secret(Step.USER_PASSWORD, "User password", "password")
    if outcome is not None:
      return outcome

    self.state.user_password = value
    return self.forward(Step.USER_PASSWORD)

  def encrypt_disk_step(self) -> Outcome:
    result = self.ui.confirm(
      "Disk encryption",
      [],
      [
        "Encrypt the root filesystem with LUKS?",
        "You will be asked for the passphrase at every boot.",
      ],
      self.summary(Step.ENCRYPT_DISK),
    )
    match result.action:
      case Action.YES:
        self.state.set_encrypt_disk(True)
        return self.forward(Step.ENCRYPT_DISK)
      case Action.NO:
        self.state.set_encrypt_disk(False)
        return self.forward(Step.ENCRYPT_DISK)
      case Action.BACK:
        return self.back(Step.ENCRYPT_DISK)
      case _:
        return Outcome.quit()

  def luks_password_step(self) -> Outcome:
    outcome, value = self._confirmed_secret(Step.LUKS_PASSWORD, "Encryption passphrase", "passphrase")
    if outcome is not None:
      return outcome

    self.state.luks_password = value
    return self.forward(Step.LUKS_PASSWORD)

  def swap_step(self) -> Outcome:
    result = self.ui.confirm(
      "Swap",
      [],
      ["Enable compressed swap in RAM (zram)?"],
      self.summary(Step.SWAP),
    )
    match result.action:
      case Action.YES:
        self.state.swap_enabled = True
        return self.forward(Step.SWAP)
      case Action.NO:
        self.state.swap_enabled = False
        return self.forward(Step.SWAP)
      case Action.BACK:
        return self.back(Step.SWAP)
      case _:
        return Outcome.quit()

  # =============================================================================
  # Applications and review
  # =============================================================================

  def applications_step(self) -> Outcome:
    result = self.ui.select_applications(
      self.state.app_flags.copy(), self.state.catalogue, self.summary(Step.APPLICATIONS)
    )
    match result.action:
      case Action.SUBMIT:
        flags = result.value if isinstance(result.value, AppSelectionFlags) else self.state.app_flags
        self.state.app_flags = flags
        self.state.app_selection = selection_from_app_flags(flags, self.state.catalogue)
        return self.forward(Step.APPLICATIONS)
      case Action.BACK:
        return self.back(Step.APPLICATIONS)
      case _:
        return Outcome.quit()

  def review_items(self) -> tuple[list[tuple[str, str]], list[tuple[str, str]], int]:
    state = self.state
    assert state.disk is not None

    system_items = [
      ("Network", state.network_label or "Not connected"),
      ("Disk", state.disk.label),
      ("Filesystem", "Btrfs (LUKS encrypted)" if state.encrypt_disk else "Btrfs"),
      ("GPU", format_gpu_summary(state.gpu_vendors, state.nvidia_variant) or "Not detected"),
      ("Swap", "Enabled (zram)" if state.swap_enabled else "Disabled"),
      ("Hostname", state.hostname),
      ("Username", state.username),
      ("Keyboard", state.keymap),
      ("Timezone", state.timezone),
    ]

    package_items: list[tuple[str, str]] = []
    selected = 0
    for category, title in CATEGORY_TITLES.items():
      labels = labels_for_category(state.app_flags, state.catalogue, category)
      selected += len(labels)
      package_items.append((title, ", ".join(labels) if labels else "None"))

    return system_items, package_items, selected

  def review_step(self) -> Outcome:
    if self.state.disk is None:
      return Outcome.advance(Step.DISK)

    system_items, package_items, selected = self.review_items()
    result = self.ui.review(system_items, package_items, selected)
    match result.action:
      case Action.SUBMIT:
        return self.forward(Step.REVIEW)
      case Action.BACK:
        return self.back(Step.REVIEW)
      case Action.EDIT:
        return Outcome.advance(FIRST_STEP)
      case _:
        return Outcome.quit()


def run_setup_wizard(
  ui: WizardUI,
  runtime: RuntimeConfig,
  connector: NetworkConnector | None = None,
) -> InstallConfig | None:
  """
  Collect the installation configuration.

  Returns None when there is nothing to install on or the user quits.
  """
  disks = list_disks()
  if not disks:
    console.print("No disks detected.")
    return None

  defaults = load_defaults()
  timezones = load_timezones()
  state = SessionState(
    defaults,
    load_catalogue(),
    gpu_vendors=detect_gpu_vendors(),
    timezone=detect_timezone_local(timezones) or "",
  )

  wizard = Wizard(
    ui,
    state,
    connector or NetworkConnector(),
    disks,
    load_keymaps(),
    timezones,
    runtime,
  )
  if not wizard.run():
    return None

  return state.to_install_config(load_base_packages(), offline_only=runtime.offline_only)
