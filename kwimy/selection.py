"""
Application catalogue and driver package selection.

The catalogue is read from config.json. Every category keeps one boolean per
choice, so the wizard can show ticked boxes and the configuration builder can
turn them into package lists.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final

from kwimy.types import AppChoice, GPUVendor, NvidiaVariant
from kwimy.utils import load_config

CATEGORIES: Final[tuple[str, ...]] = ("compositors", "browsers", "editors", "terminals")

CATEGORY_TITLES: Final[dict[str, str]] = {
  "compositors": "Compositor",
  "browsers": "Browsers",
  "editors": "Editors",
  "terminals": "Terminals",
}


def load_catalogue() -> dict[str, list[AppChoice]]:
  applications = load_config()["applications"]
  return {
    category: [
      AppChoice(
        label=str(choice["label"]),
        pacman=[str(pkg) for pkg in choice.get("pacman", [])],
        aur=[str(pkg) for pkg in choice.get("aur", [])],
      )
      for choice in applications.get(category, [])
    ]
    for category in CATEGORIES
  }


@dataclass
class PackageSelection:
  """Packages to install from the official repositories and from the AUR."""

  pacman: list[str] = field(default_factory=list)
  aur: list[str] = field(default_factory=list)

  def extend(self, other: PackageSelection) -> None:
    self.pacman.extend(pkg for pkg in other.pacman if pkg not in self.pacman)
    self.aur.extend(pkg for pkg in other.aur if pkg not in self.aur)

  @property
  def is_empty(self) -> bool:
    return not self.pacman and not self.aur


@dataclass
class AppSelectionFlags:
  """One boolean per catalogue entry, grouped by category."""

  flags: dict[str, list[bool]] = field(default_factory=dict)

  @classmethod
  def empty(cls, catalogue: dict[str, list[AppChoice]]) -> AppSelectionFlags:
    return cls({category: [False] * len(choices) for category, choices in catalogue.items()})

  def get(self, category: str) -> list[bool]:
    return self.flags.get(category, [])

  def toggle(self, category: str, index: int) -> None:
    values = self.flags.get(category)
    if values is None or not 0 <= index < len(values):
      return

    values[index] = not values[index]

  def copy(self) -> AppSelectionFlags:
    return AppSelectionFlags({category: list(values) for category, values in self.flags.items()})

  def count(self) -> int:
    return sum(sum(values) for values in self.flags.values())


def selection_from_flags(flags: list[bool], choices: list[AppChoice]) -> PackageSelection:
  selection = PackageSelection()
  for flag, choice in zip(flags, choices):
    if flag:
      selection.extend(PackageSelection(list(choice["pacman"]), list(choice["aur"])))
  return selection


def selection_from_app_flags(
  app_flags: AppSelectionFlags,
  catalogue: dict[str, list[AppChoice]],
  categories: tuple[str, ...] = ("browsers", "editors", "terminals"),
) -> PackageSelection:
  """Packages for every ticked entry outside the compositor category."""
  selection = PackageSelection()
  for category in categories:
    selection.extend(selection_from_flags(app_flags.get(category), catalogue.get(category, [])))
  return selection


def first_selected(flags: list[bool]) -> int | None:
  return next((i for i, flag in enumerate(flags) if flag), None)


def labels_for_category(app_flags: AppSelectionFlags, catalogue: dict[str, list[AppChoice]], category: str) -> list[str]:
  choices = catalogue.get(category, [])
  return [choice["label"] for flag, choice in zip(app_flags.get(category), choices) if flag]


# =============================================================================
# GPU drivers
# =============================================================================


def driver_packages(vendors: set[GPUVendor], nvidia_variant: NvidiaVariant | None) -> list[str]:
  """
  Driver packages for the detected vendors.

  Nvidia packages are only added when a variant was picked; skipping the
  drivers step leaves the system on the in-kernel driver.
  """
  gpu_config: dict[str, list[str]] = load_config()["gpu_packages"]

  vendor_keys = [vendor.value for vendor in (GPUVendor.INTEL, GPUVendor.AMD) if vendor in vendors]
  if GPUVendor.NVIDIA in vendors and nvidia_variant is not None:
    vendor_keys.append(f"nvidia_{nvidia_variant.value}")

  packages = {pkg for key in vendor_keys for pkg in gpu_config.get(key, [])}
  return sorted(packages)


def format_gpu_summary(vendors: set[GPUVendor], nvidia_variant: NvidiaVariant | None) -> str | None:
  names = {
    GPUVendor.INTEL: "Intel",
    GPUVendor.AMD: "AMD",
    GPUVendor.NVIDIA: "NVIDIA",
  }
  found = [names[vendor] for vendor in (GPUVendor.INTEL, GPUVendor.AMD, GPUVendor.NVIDIA) if vendor in vendors]
  if not found:
    return None

  summary = ", ".join(found)
  if GPUVendor.NVIDIA in vendors:
    summary += f" ({nvidia_variant.label if nvidia_variant else 'no proprietary driver'})"
  return summary
