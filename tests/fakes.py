"""
Test doubles shared by the wizard, network and progress tests.

ScriptedUI replays a fixed list of answers and fails loudly when the wizard
asks for a screen the script did not expect. FakeBackend stands in for nmcli
and FakeClock drives every timeout without sleeping.
"""

from collections import deque

from kwimy.context import SessionState
from kwimy.network import NetworkConnector, NetworkError
from kwimy.selection import load_catalogue
from kwimy.types import DiskInfo, GPUVendor, RuntimeConfig, WifiNetwork
from kwimy.utils import load_defaults
from kwimy.wizard import Action, UIResult, Wizard

DISKS = [DiskInfo("sda", "500G", "X"), DiskInfo("nvme0n1", "1T")]
KEYMAPS = ["de", "fi", "us"]
TIMEZONES = ["America/New_York", "Europe/Helsinki", "Europe/Lisbon", "UTC"]


def answer(kind: str, action: Action, value=None) -> tuple[str, UIResult]:
  return kind, UIResult(action, value)


class ScriptedUI:
  def __init__(self, script: list[tuple[str, UIResult]]) -> None:
    self.script = deque(script)
    self.calls: list[tuple[str, dict]] = []
    self.statuses: list[tuple[str, list[str]]] = []

  def _next(self, kind: str, **kwargs) -> UIResult:
    self.calls.append((kind, kwargs))
    if not self.script:
      raise AssertionError(f"unexpected {kind} screen: {kwargs.get('title', '')}")

    expected, result = self.script.popleft()
    if expected != kind:
      raise AssertionError(f"expected {expected} screen, got {kind}: {kwargs.get('title', '')}")
    return result

  def kinds(self) -> list[str]:
    return [kind for kind, _ in self.calls]

  def select(self, title, items, initial, summary, info=None):
    return self._next("select", title=title, items=items, initial=initial, summary=summary)

  def confirm(self, title, warning, info, summary):
    return self._next("confirm", title=title, summary=summary)

  def text_input(self, title, info, summary, secret=False, initial="", error=None):
    return self._next("text", title=title, info=info, secret=secret, initial=initial, error=error, summary=summary)

  def show_status(self, title, lines, summary):
    self.statuses.append((title, lines))

  def select_applications(self, flags, catalogue, summary):
    return self._next("apps", flags=flags)

  def wifi_selector(self, networks, status, wifi_connected, internet_ready, summary):
    return self._next(
      "wifi",
      networks=networks,
      status=status,
      wifi_connected=wifi_connected,
      internet_ready=internet_ready,
    )

  def network_required(self, summary):
    return self._next("network_required")

  def review(self, system_items, package_items, selected_packages):
    return self._next("review", system_items=system_items, package_items=package_items)


class FakeClock:
  def __init__(self) -> None:
    self.now = 0.0

  def __call__(self) -> float:
    return self.now

  def sleep(self, seconds: float) -> None:
    self.now += seconds


class FakeBackend:
  """
  In-memory NetworkManager.

  `connect_errors` is consumed one entry per connect attempt: a string is
  raised as the nmcli error, None means the attempt is accepted. Accepted
  attempts associate immediately unless `associate` is False.
  With a clock, each attempt moves it forward by `connect_seconds`.
  """

  def __init__(
    self,
    device: bool = True,
    ready: bool = False,
    networks: list[WifiNetwork] | None = None,
    connect_errors: list[str | None] | None = None,
    associate: bool = True,
    ready_after_connect: bool = True,
    clock: FakeClock | None = None,
    connect_seconds: float = 0.0,
  ) -> None:
    self.device = device
    self.ready = ready
    self.networks = networks or []
    self.connect_errors = list(connect_errors or [])
    self.associate = associate
    self.ready_after_connect = ready_after_connect
    self.clock = clock
    self.connect_seconds = connect_seconds
    self.connected = False
    self.state = "disconnected"
    self.label: str | None = None
    self.scan_error: str | None = None
    self.connect_calls: list[tuple[str, str | None, str | None, str | None]] = []
    self.forgotten: list[str] = []
    self.disconnects = 0

  def has_wifi_device(self) -> bool:
    return self.device

  def wifi_device_name(self) -> str | None:
    return "wlan0" if self.device else None

  def wifi_device_state(self) -> str | None:
    return self.state if self.device else None

  def is_wifi_connected(self) -> bool:
    return self.connected

  def list_wifi_networks(self) -> list[WifiNetwork]:
    if self.scan_error is not None:
      raise NetworkError(self.scan_error)
    return list(self.networks)

  def connect_wifi_profile(self, ssid, password, device, connection_name) -> None:
    self.connect_calls.append((ssid, password, device, connection_name))
    if self.clock is not None:
      self.clock.now += self.connect_seconds
    error = self.connect_errors.pop(0) if self.connect_errors else None
    if error is not None:
      raise NetworkError(error)

    if self.associate:
      self.connected = True
      self.state = "connected"
      self.label = ssid
      if self.ready_after_connect:
        self.ready = True
    else:
      self.state = "connecting (configuring)"

  def disconnect_wifi_device(self) -> None:
    self.disconnects += 1
    self.connected = False

  def forget_wifi_connection(self, ssid: str) -> None:
    self.forgotten.append(ssid)

  def is_network_ready(self) -> bool:
    return self.ready

  def active_connection_label(self) -> str | None:
    return self.label


def make_state(nvidia: bool = False, timezone: str = "Europe/Lisbon") -> SessionState:
  vendors = {GPUVendor.INTEL, GPUVendor.NVIDIA} if nvidia else {GPUVendor.INTEL}
  return SessionState(load_defaults(), load_catalogue(), gpu_vendors=vendors, timezone=timezone)


def make_connector(backend: FakeBackend, clock: FakeClock | None = None) -> NetworkConnector:
  clock = clock or FakeClock()
  return NetworkConnector(backend, clock=clock, sleep=clock.sleep)


def make_wizard(
  ui: ScriptedUI,
  state: SessionState | None = None,
  backend: FakeBackend | None = None,
  runtime: RuntimeConfig | None = None,
  detected_timezone: str | None = None,
  timezone_log: list[str] | None = None,
) -> Wizard:
  log = timezone_log if timezone_log is not None else []
  return Wizard(
    ui,
    state or make_state(),
    make_connector(backend or FakeBackend(ready=True)),
    DISKS,
    KEYMAPS,
    TIMEZONES,
    runtime or RuntimeConfig(),
    detect_timezone=lambda _zones: detected_timezone,
    timezone_log=log.append,
  )
