from __future__ import annotations

from kwimy.selection import (
  AppSelectionFlags,
  PackageSelection,
  driver_packages,
  first_selected,
  labels_for_category,
  selection_from_flags,
)
from kwimy.types import AppChoice, DefaultsConfig, DiskInfo, GPUVendor, InstallConfig, NvidiaVariant

FALLBACK_HOSTNAME = "kwimy"
FALLBACK_COMPOSITOR = "Hyprland (Caelestia)"


class SessionState:
  """
  Holds every answer collected by the setup wizard.

  One instance lives for the whole wizard run. Each step handler reads the
  full state to render the summary panel and writes only the fields it owns.
  When the wizard finishes the state is converted once into an immutable
  InstallConfig and thrown away.
  """

  def __init__(
    self,
    defaults: DefaultsConfig,
    catalogue: dict[str, list[AppChoice]],
    gpu_vendors: set[GPUVendor] | None = None,
    timezone: str = "",
  ) -> None:
    self.defaults: DefaultsConfig = defaults
    self.catalogue: dict[str, list[AppChoice]] = catalogue
    self.gpu_vendors: set[GPUVendor] = set(gpu_vendors or ())

    # User-provided configuration
    self.disk: DiskInfo | None = None
    self.keymap: str = defaults["keymap"]
    self.timezone: str = timezone
    self.hostname: str = defaults["hostname"] or FALLBACK_HOSTNAME
    self.username: str = ""
    self.user_password: str = ""
    self.luks_password: str = ""
    self.encrypt_disk: bool = True
    self.swap_enabled: bool = True
    self.nvidia_variant: NvidiaVariant | None = None
    self.app_flags: AppSelectionFlags = AppSelectionFlags.empty(catalogue)
    self.app_selection: PackageSelection = PackageSelection()

    # Display only
    self.network_label: str | None = None

  @property
  def include_drivers(self) -> bool:
    """The Drivers step only exists when an Nvidia GPU was detected."""
    return GPUVendor.NVIDIA in self.gpu_vendors

  def set_encrypt_disk(self, enabled: bool) -> None:
    self.encrypt_disk = enabled
    if not enabled:
      self.luks_password = ""

  def to_install_config(self, base_packages: list[str], offline_only: bool = False) -> InstallConfig:
    """Convert the collected answers into the configuration handed to the engine."""
    if self.disk is None:
      raise ValueError("No installation disk selected")

    compositors = self.catalogue.get("compositors", [])
    compositor_flags = [False] * len(compositors)
    compositor_index = first_selected(self.app_flags.get("compositors"))
    if compositor_index is not None and compositor_index < len(compositor_flags):
      compositor_flags[compositor_index] = True

    compositor_selection = selection_from_flags(compositor_flags, compositors)
    packages = list(base_packages)
    packages.extend(pkg for pkg in compositor_selection.pacman if pkg not in packages)

    if compositor_index is not None and compositor_index < len(compositors):
      compositor_label = compositors[compositor_index]["label"]
    else:
      compositor_label = compositors[0]["label"] if compositors else FALLBACK_COMPOSITOR

    return InstallConfig(
      disk=self.disk,
      keymap=self.keymap,
      timezone=self.timezone or self.defaults["timezone"],
      hostname=self.hostname or FALLBACK_HOSTNAME,
      username=self.username,
      user_password=self.user_password,
      luks_password=self.luks_password if self.encrypt_disk else "",
      encrypt_disk=self.encrypt_disk,
      swap_enabled=self.swap_enabled,
      kernel_package=self.defaults["kernel"],
      kernel_headers=self.defaults["kernel_headers"],
      base_packages=tuple(packages),
      driver_packages=tuple(driver_packages(self.gpu_vendors, self.nvidia_variant)),
      extra_pacman_packages=tuple(self.app_selection.pacman),
      extra_aur_packages=tuple(self.app_selection.aur + compositor_selection.aur),
      compositor=compositor_label,
      browsers=tuple(labels_for_category(self.app_flags, self.catalogue, "browsers")),
      editors=tuple(labels_for_category(self.app_flags, self.catalogue, "editors")),
      hyprland_selected=compositor_index is not None,
      offline_only=offline_only,
    )
