"""
Wi-Fi discovery and connection through NetworkManager (nmcli).

NmcliBackend is a thin wrapper around nmcli invocations. NetworkConnector
adds the connection state machine on top: connect attempts with a bounded
polling wait, authentication-failure cleanup, and the grace window that
hides stale scan results right after a successful connection.
"""

from __future__ import annotations

import logging
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from kwimy.types import WifiNetwork
from kwimy.validations import is_wifi_auth_error

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 8.0
POLL_INTERVAL = 0.2
CONNECTED_GRACE = 5.0

PROFILE_PREFIX = "kwimy-"
NMCLI_TIMEOUT = 30


class NetworkError(Exception):
  """An nmcli invocation failed. The message is what nmcli reported."""


# =============================================================================
# nmcli backend
# =============================================================================


def split_nmcli_line(line: str) -> list[str]:
  """Split an nmcli terse-mode line on unescaped colons and unescape the fields."""
  parts: list[str] = []
  current: list[str] = []
  i = 0
  while i < len(line):
    if line[i] == "\\" and i + 1 < len(line) and line[i + 1] in ":\\":
      current.append(line[i + 1])
      i += 2
    elif line[i] == ":":
      parts.append("".join(current))
      current = []
      i += 1
    else:
      current.append(line[i])
      i += 1
  parts.append("".join(current))
  return parts


def parse_wifi_list(output: str) -> list[WifiNetwork]:
  """
  Parse `nmcli -t -f IN-USE,SSID,SIGNAL,SECURITY device wifi list` output.

  Hidden networks are dropped. An SSID seen from several access points is
  listed once, keeping the in-use entry or else the strongest signal.
  """
  best: dict[str, WifiNetwork] = {}
  for line in output.splitlines():
    fields = split_nmcli_line(line)
    if len(fields) < 4:
      continue

    in_use, ssid, signal, security = fields[0], fields[1], fields[2], fields[3]
    if not ssid:
      continue

    network = WifiNetwork(
      ssid=ssid,
      signal=int(signal) if signal.isdigit() else 0,
      security=security,
      in_use=in_use.strip() == "*",
    )
    current = best.get(ssid)
    if current is None or (network.in_use, network.signal) > (current.in_use, current.signal):
      best[ssid] = network

  return sorted(best.values(), key=lambda n: (n.in_use, n.signal), reverse=True)


class NmcliBackend:
  """Every nmcli call the connector needs. Failures raise NetworkError."""

  def _run(self, args: list[str], timeout: int = NMCLI_TIMEOUT) -> subprocess.CompletedProcess[str]:
    redacted = ["***" if i and args[i - 1] == "password" else arg for i, arg in enumerate(args)]
    logger.debug("nmcli %s", " ".join(redacted))
    try:
      return subprocess.run(["nmcli", *args], capture_output=True, text=True, timeout=timeout)

    except FileNotFoundError as e:
      raise NetworkError("nmcli not found") from e

    except subprocess.TimeoutExpired as e:
      raise NetworkError(f"nmcli timed out after {timeout}s") from e

  def _check(self, args: list[str], timeout: int = NMCLI_TIMEOUT) -> str:
    result = self._run(args, timeout=timeout)
    if result.returncode != 0:
      raise NetworkError(result.stderr.strip() or f"nmcli exited with code {result.returncode}")
    return result.stdout

  def _wifi_devices(self) -> list[tuple[str, str]]:
    output = self._check(["-t", "-f", "DEVICE,TYPE,STATE", "device", "status"])
    devices: list[tuple[str, str]] = []
    for line in output.splitlines():
      fields = split_nmcli_line(line)
      if len(fields) >= 3 and fields[1] == "wifi":
        devices.append((fields[0], fields[2]))
    return devices

  def has_wifi_device(self) -> bool:
    return bool(self._wifi_devices())

  def wifi_device_name(self) -> str | None:
    devices = self._wifi_devices()
    return devices[0][0] if devices else None

  def wifi_device_state(self) -> str | None:
    devices = self._wifi_devices()
    return devices[0][1] if devices else None

  def is_wifi_connected(self) -> bool:
    return self.wifi_device_state() == "connected"

  def list_wifi_networks(self) -> list[WifiNetwork]:
    output = self._check(["-t", "-f", "IN-USE,SSID,SIGNAL,SECURITY", "device", "wifi", "list", "--rescan", "auto"])
    return parse_wifi_list(output)

  def connect_wifi_profile(
    self,
    ssid: str,
    password: str | None,
    device: str | None,
    connection_name: str | None,
  ) -> None:
    args = ["device", "wifi", "connect", ssid]
    if password:
      args += ["password", password]
    if device:
      args += ["ifname", device]
    if connection_name:
      args += ["name", connection_name]
    _ = self._check(args, timeout=45)

  def disconnect_wifi_device(self) -> None:
    device = self.wifi_device_name()
    if device:
      _ = self._check(["device", "disconnect", device])

  def forget_wifi_connection(self, ssid: str) -> None:
    for name in (ssid, f"{PROFILE_PREFIX}{ssid}"):
      _ = self._run(["connection", "delete", "id", name])

  def is_network_ready(self) -> bool:
    """A default route must exist; association alone is not enough."""
    try:
      route = subprocess.run(["ip", "route", "show", "default"], capture_output=True, text=True, check=False)
    except FileNotFoundError as e:
      raise NetworkError("ip not found") from e

    if not route.stdout.strip():
      return False

    connectivity = self._check(["-t", "-f", "CONNECTIVITY", "general"]).strip()
    return connectivity not in ("none", "portal", "limited")

  def active_connection_label(self) -> str | None:
    output = self._check(["-t", "-f", "NAME,TYPE", "connection", "show", "--active"])
    for line in output.splitlines():
      fields = split_nmcli_line(line)
      if len(fields) >= 2 and fields[1] != "loopback" and fields[0] != "lo":
        return fields[0].removeprefix(PROFILE_PREFIX)
    return None


class NetworkBackend(Protocol):
  def has_wifi_device(self) -> bool: ...
  def wifi_device_name(self) -> str | None: ...
  def wifi_device_state(self) -> str | None: ...
  def is_wifi_connected(self) -> bool: ...
  def list_wifi_networks(self) -> list[WifiNetwork]: ...
  def connect_wifi_profile(
    self, ssid: str, password: str | None, device: str | None, connection_name: str | None
  ) -> None: ...
  def disconnect_wifi_device(self) -> None: ...
  def forget_wifi_connection(self, ssid: str) -> None: ...
  def is_network_ready(self) -> bool: ...
  def active_connection_label(self) -> str | None: ...


# =============================================================================
# Connection state machine
# =============================================================================


class NetworkState(Enum):
  NO_DEVICE = "no_device"
  SEARCHING = "searching"
  CONNECTING = "connecting"
  STABILIZING = "stabilizing"
  READY = "ready"


class ConnectStatus(Enum):
  CONNECTED = "connected"
  AUTH_FAILED = "auth_failed"
  TIMEOUT = "timeout"
  FAILED = "failed"


@dataclass(frozen=True)
class ConnectResult:
  status: ConnectStatus
  message: str = ""
  device_state: str = "unknown"

  @property
  def ok(self) -> bool:
    return self.status is ConnectStatus.CONNECTED


type TickCallback = Callable[[str, float], None]


class NetworkConnector:
  """
  Wi-Fi connection state machine used by the Network step.

  Timing is driven by an injectable monotonic clock and sleep function. The
  clock is sampled once per poll and compared against explicit deadlines.
  """

  def __init__(
    self,
    backend: NetworkBackend | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    connect_timeout: float = CONNECT_TIMEOUT,
    poll_interval: float = POLL_INTERVAL,
    connected_grace: float = CONNECTED_GRACE,
  ) -> None:
    self.backend: NetworkBackend = backend or NmcliBackend()
    self.clock = clock
    self.sleep = sleep
    self.connect_timeout: float = connect_timeout
    self.poll_interval: float = poll_interval
    self.connected_grace: float = connected_grace
    self.state: NetworkState = NetworkState.SEARCHING
    self.connected_at: float | None = None
    self._reentry: bool = False

  # Soft queries: a failing backend means "no"

  def has_device(self) -> bool:
    try:
      found = self.backend.has_wifi_device()
    except NetworkError as e:
      logger.debug("wifi device lookup failed: %s", e)
      found = False

    if not found:
      self.state = NetworkState.NO_DEVICE
    elif self.state is NetworkState.NO_DEVICE:
      self.state = NetworkState.SEARCHING
    return found

  def has_internet(self) -> bool:
    """Readiness is judged on routing, never on Wi-Fi association."""
    try:
      ready = self.backend.is_network_ready()
    except NetworkError as e:
      logger.debug("readiness check failed: %s", e)
      ready = False

    if ready:
      self.state = NetworkState.READY
    elif self.state is NetworkState.READY:
      self.state = NetworkState.SEARCHING
    return ready

  def connection_label(self) -> str | None:
    try:
      return self.backend.active_connection_label()
    except NetworkError:
      return None

  def device_state(self) -> str:
    try:
      return self.backend.wifi_device_state() or "unknown"
    except NetworkError:
      return "unknown"

  def scan(self) -> tuple[list[WifiNetwork], str | None]:
    """List visible networks. Errors come back as a status message and an empty list."""
    try:
      return self.backend.list_wifi_networks(), None
    except NetworkError as e:
      return [], str(e)

  def is_wifi_connected(self, networks: list[WifiNetwork]) -> bool:
    """
    Whether the scan shows an in-use network.

    Scan results lag behind the device right after a connection, so a
    not-in-use scan inside the grace window still counts as connected.
    """
    if any(network.in_use for network in networks):
      self.connected_at = None
      return True

    if self.connected_at is not None:
      if self.clock() - self.connected_at < self.connected_grace:
        return True
      self.connected_at = None

    return False

  def connect(self, ssid: str, password: str | None = None, on_tick: TickCallback | None = None) -> ConnectResult:
    """
    Replace any existing link and profile for `ssid` with a fresh attempt.

    Authentication failures remove the attempted profile so the next
    password try starts clean.
    """
    self.state = NetworkState.CONNECTING

    for cleanup in (self.backend.disconnect_wifi_device, lambda: self.backend.forget_wifi_connection(ssid)):
      try:
        cleanup()
      except NetworkError as e:
        logger.debug("pre-connect cleanup failed: %s", e)

    try:
      device = self.backend.wifi_device_name()
    except NetworkError:
      device = None

    try:
      self.backend.connect_wifi_profile(ssid, password, device, f"{PROFILE_PREFIX}{ssid}")

    except NetworkError as e:
      self.state = NetworkState.SEARCHING
      message = str(e)
      if is_wifi_auth_error(message):
        self.forget(ssid)
        return ConnectResult(ConnectStatus.AUTH_FAILED, "Incorrect password.")
      return ConnectResult(ConnectStatus.FAILED, message)

    # The timeout covers the wait after nmcli returns, not nmcli itself
    start = self.clock()
    deadline = start + self.connect_timeout
    now = start
    while now < deadline:
      device_state = self.device_state()
      if on_tick is not None:
        on_tick(device_state, now - start)

      try:
        connected = self.backend.is_wifi_connected()
      except NetworkError:
        connected = False

      if connected:
        self.connected_at = self.clock()
        self.state = NetworkState.STABILIZING
        return ConnectResult(ConnectStatus.CONNECTED, device_state=device_state)

      self.sleep(self.poll_interval)
      now = self.clock()

    self.state = NetworkState.SEARCHING
    device_state = self.device_state()
    return ConnectResult(
      ConnectStatus.TIMEOUT,
      f"Connection failed (state: {device_state}). Please try again.",
      device_state=device_state,
    )

  def forget(self, ssid: str) -> None:
    try:
      self.backend.forget_wifi_connection(ssid)
    except NetworkError as e:
      logger.debug("forget %s failed: %s", ssid, e)

  # Force re-entry: a later step can send the user back into editing mode

  def request_reentry(self) -> None:
    self._reentry = True

  def consume_reentry(self) -> bool:
    """Return and clear the re-entry request. Without a Wi-Fi device there is nothing to edit."""
    requested = self._reentry
    self._reentry = False
    return requested and self.has_device()
