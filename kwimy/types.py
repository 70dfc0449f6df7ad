"""
Type definitions for kwimy.

This module contains the value types shared by the wizard, the network
connector, the progress screen and the installation engine.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TypedDict


class DefaultsConfig(TypedDict):
  """Wizard defaults loaded from config.json."""

  hostname: str
  keymap: str
  timezone: str
  kernel: str
  kernel_headers: str


class AppChoice(TypedDict):
  """One selectable application from the catalogue."""

  label: str
  pacman: list[str]
  aur: list[str]


class GPUVendor(Enum):
  """Enumeration of GPU vendors."""

  INTEL = "intel"
  AMD = "amd"
  NVIDIA = "nvidia"
  UNKNOWN = "unknown"


class NvidiaVariant(Enum):
  """Proprietary driver flavours offered when an Nvidia GPU is present."""

  OPEN = "open"
  PROPRIETARY = "proprietary"

  @property
  def label(self) -> str:
    return {
      NvidiaVariant.OPEN: "NVIDIA open kernel modules (Turing and newer)",
      NvidiaVariant.PROPRIETARY: "NVIDIA proprietary (Maxwell and Pascal)",
    }[self]


@dataclass(frozen=True)
class DiskInfo:
  """A whole block device that can be chosen as installation target."""

  name: str
  size: str
  model: str = ""

  @property
  def device_path(self) -> str:
    return f"/dev/{self.name}"

  def partition_path(self, index: int) -> str:
    # nvme0n1 -> nvme0n1p1, sda -> sda1
    separator = "p" if self.name[-1:].isdigit() else ""
    return f"/dev/{self.name}{separator}{index}"

  @property
  def label(self) -> str:
    if not self.model:
      return f"{self.name} ({self.size})"
    return f"{self.name} ({self.size}) {self.model}"


@dataclass(frozen=True)
class WifiNetwork:
  """A network seen in the latest scan. Rebuilt on every scan."""

  ssid: str
  signal: int = 0
  security: str = ""
  in_use: bool = False

  @property
  def is_open(self) -> bool:
    return self.security.strip() in ("", "--")


@dataclass(frozen=True)
class InstallConfig:
  """Immutable installation configuration handed to the engine."""

  disk: DiskInfo
  keymap: str
  timezone: str
  hostname: str
  username: str
  user_password: str
  luks_password: str
  encrypt_disk: bool
  swap_enabled: bool
  kernel_package: str
  kernel_headers: str
  base_packages: tuple[str, ...] = ()
  driver_packages: tuple[str, ...] = ()
  extra_pacman_packages: tuple[str, ...] = ()
  extra_aur_packages: tuple[str, ...] = ()
  compositor: str = ""
  browsers: tuple[str, ...] = ()
  editors: tuple[str, ...] = ()
  hyprland_selected: bool = False
  offline_only: bool = False

  @property
  def extra_packages(self) -> tuple[str, ...]:
    return self.extra_pacman_packages + self.extra_aur_packages


@dataclass
class RuntimeConfig:
  """Environment switches and command line options, read once at startup."""

  dry: bool = False
  allow_nonroot: bool = False
  skip_network: bool = False
  offline_only: bool = False
  debug_log: str | None = None
