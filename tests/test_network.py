"""
Tests for the Wi-Fi connector and the nmcli backend.

The connector runs against FakeBackend with a FakeClock, so timeouts and the
grace window are exercised without sleeping. Backend tests patch subprocess.
"""

import subprocess
import unittest
from unittest.mock import MagicMock, patch

from fakes import FakeBackend, FakeClock, make_connector

from kwimy.network import (
  CONNECT_TIMEOUT,
  ConnectStatus,
  NetworkError,
  NetworkState,
  NmcliBackend,
  parse_wifi_list,
  split_nmcli_line,
)
from kwimy.types import WifiNetwork


def completed(stdout: str = "", returncode: int = 0, stderr: str = "") -> MagicMock:
  return MagicMock(stdout=stdout, stderr=stderr, returncode=returncode)


# =============================================================================
# Parsing
# =============================================================================


class TestNmcliParsing(unittest.TestCase):
  def test_split_unescapes_colons_and_backslashes(self):
    self.assertEqual(split_nmcli_line(r"*:my\:net:72:WPA2"), ["*", "my:net", "72", "WPA2"])
    self.assertEqual(split_nmcli_line(r" :back\\slash:10:"), [" ", "back\\slash", "10", ""])

  def test_parse_dedupes_and_sorts(self):
    output = "\n".join(
      [
        " :office:40:WPA2",
        " :office:65:WPA2",
        "*:home:55:WPA2 WPA3",
        " ::90:WPA2",
        " :cafe:80:",
        "garbage",
      ]
    )
    networks = parse_wifi_list(output)

    self.assertEqual([n.ssid for n in networks], ["home", "cafe", "office"])
    self.assertTrue(networks[0].in_use)
    self.assertEqual(networks[2].signal, 65)
    self.assertTrue(networks[1].is_open)

  def test_open_network_markers(self):
    self.assertTrue(WifiNetwork("a", 1, "", False).is_open)
    self.assertTrue(WifiNetwork("a", 1, " -- ", False).is_open)
    self.assertFalse(WifiNetwork("a", 1, "WPA2", False).is_open)


# =============================================================================
# Connector
# =============================================================================


class TestNetworkConnector(unittest.TestCase):
  def test_correct_password_connects_within_wait(self):
    backend = FakeBackend()
    clock = FakeClock()
    connector = make_connector(backend, clock)
    ticks: list[tuple[str, float]] = []

    result = connector.connect("home", "right", lambda state, elapsed: ticks.append((state, elapsed)))

    self.assertEqual(result.status, ConnectStatus.CONNECTED)
    self.assertTrue(result.ok)
    self.assertLess(clock.now, CONNECT_TIMEOUT)
    self.assertEqual(connector.state, NetworkState.STABILIZING)
    self.assertEqual(backend.connect_calls, [("home", "right", "wlan0", "kwimy-home")])
    self.assertEqual(len(ticks), 1)
    self.assertTrue(connector.has_internet())
    self.assertEqual(connector.state, NetworkState.READY)

  def test_slow_activation_still_connects(self):
    clock = FakeClock()
    backend = FakeBackend(clock=clock, connect_seconds=CONNECT_TIMEOUT + 1)
    connector = make_connector(backend, clock)
    ticks: list[float] = []

    result = connector.connect("home", "right", lambda _state, elapsed: ticks.append(elapsed))

    self.assertEqual(result.status, ConnectStatus.CONNECTED)
    self.assertEqual(ticks, [0.0])
    self.assertEqual(connector.state, NetworkState.STABILIZING)

  def test_timeout_counts_from_activation(self):
    clock = FakeClock()
    backend = FakeBackend(associate=False, clock=clock, connect_seconds=3.0)
    connector = make_connector(backend, clock)

    result = connector.connect("slow", "pw")

    self.assertEqual(result.status, ConnectStatus.TIMEOUT)
    self.assertGreaterEqual(clock.now, 3.0 + CONNECT_TIMEOUT)

  def test_auth_failure_removes_profile(self):
    backend = FakeBackend(connect_errors=["Error: Connection activation failed: (7) Secrets were required"])
    connector = make_connector(backend)

    result = connector.connect("home", "wrong")

    self.assertEqual(result.status, ConnectStatus.AUTH_FAILED)
    self.assertEqual(result.message, "Incorrect password.")
    # Once before the attempt and once after the failure
    self.assertEqual(backend.forgotten, ["home", "home"])
    self.assertEqual(connector.state, NetworkState.SEARCHING)

  def test_other_failure_keeps_message(self):
    backend = FakeBackend(connect_errors=["Error: No network with SSID 'gone' found."])
    result = make_connector(backend).connect("gone")

    self.assertEqual(result.status, ConnectStatus.FAILED)
    self.assertEqual(result.message, "Error: No network with SSID 'gone' found.")

  def test_timeout_reports_device_state(self):
    backend = FakeBackend(associate=False)
    clock = FakeClock()
    connector = make_connector(backend, clock)
    ticks: list[float] = []

    result = connector.connect("slow", "pw", lambda _state, elapsed: ticks.append(elapsed))

    self.assertEqual(result.status, ConnectStatus.TIMEOUT)
    self.assertEqual(result.message, "Connection failed (state: connecting (configuring)). Please try again.")
    self.assertGreaterEqual(clock.now, CONNECT_TIMEOUT)
    self.assertEqual(ticks, sorted(ticks))
    self.assertLess(ticks[-1], CONNECT_TIMEOUT)

  def test_grace_window_hides_stale_scan(self):
    clock = FakeClock()
    connector = make_connector(FakeBackend(), clock)
    stale = [WifiNetwork("home", 60, "WPA2", False)]

    _ = connector.connect("home", "pw")
    self.assertTrue(connector.is_wifi_connected(stale))

    clock.now += 4.9
    self.assertTrue(connector.is_wifi_connected(stale))

    clock.now += 0.2
    self.assertFalse(connector.is_wifi_connected(stale))

  def test_in_use_network_counts_as_connected(self):
    connector = make_connector(FakeBackend())
    self.assertTrue(connector.is_wifi_connected([WifiNetwork("home", 60, "WPA2", True)]))
    self.assertFalse(connector.is_wifi_connected([]))

  def test_scan_fails_soft(self):
    backend = FakeBackend()
    backend.scan_error = "Error: Wi-Fi is disabled"
    networks, error = make_connector(backend).scan()

    self.assertEqual(networks, [])
    self.assertEqual(error, "Error: Wi-Fi is disabled")

  def test_reentry_flag_needs_a_device(self):
    for device, expected in ((True, True), (False, False)):
      with self.subTest(device=device):
        connector = make_connector(FakeBackend(device=device))
        connector.request_reentry()
        self.assertEqual(connector.consume_reentry(), expected)
        self.assertFalse(connector.consume_reentry())

  def test_no_device_state(self):
    connector = make_connector(FakeBackend(device=False))
    self.assertFalse(connector.has_device())
    self.assertEqual(connector.state, NetworkState.NO_DEVICE)


# =============================================================================
# nmcli backend
# =============================================================================


class TestNmcliBackend(unittest.TestCase):
  @patch("kwimy.network.subprocess.run")
  def test_wifi_device_lookup(self, mock_run):
    mock_run.return_value = completed("eth0:ethernet:connected\nwlan0:wifi:disconnected\n")
    backend = NmcliBackend()

    self.assertTrue(backend.has_wifi_device())
    self.assertEqual(backend.wifi_device_name(), "wlan0")
    self.assertEqual(backend.wifi_device_state(), "disconnected")
    self.assertFalse(backend.is_wifi_connected())

  @patch("kwimy.network.subprocess.run")
  def test_connect_builds_command(self, mock_run):
    mock_run.return_value = completed()
    NmcliBackend().connect_wifi_profile("home", "pw", "wlan0", "kwimy-home")

    args = mock_run.call_args[0][0]
    self.assertEqual(
      args,
      ["nmcli", "device", "wifi", "connect", "home", "password", "pw", "ifname", "wlan0", "name", "kwimy-home"],
    )

  @patch("kwimy.network.subprocess.run")
  def test_failure_raises_with_stderr(self, mock_run):
    mock_run.return_value = completed(returncode=10, stderr="Error: bad things\n")
    with self.assertRaises(NetworkError) as ctx:
      NmcliBackend().list_wifi_networks()
    self.assertEqual(str(ctx.exception), "Error: bad things")

  @patch("kwimy.network.subprocess.run", side_effect=FileNotFoundError)
  def test_missing_nmcli(self, _mock_run):
    with self.assertRaises(NetworkError):
      NmcliBackend().has_wifi_device()

  @patch("kwimy.network.subprocess.run", side_effect=subprocess.TimeoutExpired("nmcli", 30))
  def test_timeout(self, _mock_run):
    with self.assertRaises(NetworkError):
      NmcliBackend().has_wifi_device()

  @patch("kwimy.network.subprocess.run")
  def test_network_ready_needs_route_and_connectivity(self, mock_run):
    cases = [
      ("", "full", False),
      ("default via 192.168.1.1 dev wlan0", "full", True),
      ("default via 192.168.1.1 dev wlan0", "portal", False),
      ("default via 192.168.1.1 dev wlan0", "limited", False),
    ]
    for route, connectivity, expected in cases:
      with self.subTest(route=route, connectivity=connectivity):
        mock_run.side_effect = [completed(route), completed(f"{connectivity}\n")]
        self.assertEqual(NmcliBackend().is_network_ready(), expected)

  @patch("kwimy.network.subprocess.run")
  def test_active_label_strips_profile_prefix(self, mock_run):
    mock_run.return_value = completed("lo:loopback\nkwimy-home:802-11-wireless\n")
    self.assertEqual(NmcliBackend().active_connection_label(), "home")


if __name__ == "__main__":
  unittest.main()
