"""Tests for the session state, its conversion into InstallConfig and package selection."""

import unittest

from fakes import DISKS, make_state

from kwimy.selection import (
  AppSelectionFlags,
  driver_packages,
  format_gpu_summary,
  labels_for_category,
  selection_from_app_flags,
)
from kwimy.types import GPUVendor, NvidiaVariant


class TestToInstallConfig(unittest.TestCase):
  def test_requires_a_disk(self):
    with self.assertRaises(ValueError):
      make_state().to_install_config([])

  def test_passphrase_empty_iff_not_encrypting(self):
    for encrypt in (True, False):
      with self.subTest(encrypt=encrypt):
        state = make_state()
        state.disk = DISKS[0]
        state.luks_password = "luks"
        state.encrypt_disk = encrypt

        config = state.to_install_config([])

        self.assertEqual(config.luks_password == "", not encrypt)

  def test_first_compositor_only(self):
    state = make_state()
    state.disk = DISKS[0]
    compositors = state.catalogue["compositors"]
    state.app_flags.toggle("compositors", 1)
    state.app_flags.toggle("compositors", 2)

    config = state.to_install_config(["base"])

    self.assertEqual(config.compositor, compositors[1]["label"])
    self.assertTrue(config.hyprland_selected)
    for pkg in compositors[1]["pacman"]:
      self.assertIn(pkg, config.base_packages)
    for pkg in compositors[2]["pacman"]:
      if pkg not in compositors[1]["pacman"]:
        self.assertNotIn(pkg, config.base_packages)

  def test_compositor_aur_packages_are_extra(self):
    state = make_state()
    state.disk = DISKS[0]
    state.app_flags.toggle("compositors", 0)

    config = state.to_install_config([])

    self.assertEqual(config.extra_aur_packages, tuple(state.catalogue["compositors"][0]["aur"]))

  def test_no_compositor_uses_default_label(self):
    state = make_state()
    state.disk = DISKS[0]
    config = state.to_install_config([])

    self.assertFalse(config.hyprland_selected)
    self.assertEqual(config.compositor, state.catalogue["compositors"][0]["label"])

  def test_empty_timezone_falls_back_to_default(self):
    state = make_state(timezone="")
    state.disk = DISKS[0]
    self.assertEqual(state.to_install_config([]).timezone, "UTC")

  def test_application_labels(self):
    state = make_state()
    state.disk = DISKS[0]
    state.app_flags.toggle("browsers", 0)
    state.app_flags.toggle("editors", 1)
    state.app_selection = selection_from_app_flags(state.app_flags, state.catalogue)

    config = state.to_install_config([])

    self.assertEqual(config.browsers, (state.catalogue["browsers"][0]["label"],))
    self.assertEqual(config.editors, (state.catalogue["editors"][1]["label"],))


class TestSelection(unittest.TestCase):
  def test_flags_toggle_and_count(self):
    state = make_state()
    flags = AppSelectionFlags.empty(state.catalogue)
    flags.toggle("browsers", 0)
    flags.toggle("browsers", 0)
    flags.toggle("terminals", 0)
    flags.toggle("terminals", 99)
    flags.toggle("missing", 0)

    self.assertEqual(flags.count(), 1)
    self.assertEqual(labels_for_category(flags, state.catalogue, "terminals"), [state.catalogue["terminals"][0]["label"]])

  def test_copy_is_independent(self):
    flags = AppSelectionFlags.empty(make_state().catalogue)
    copy = flags.copy()
    copy.toggle("browsers", 0)
    self.assertEqual(flags.count(), 0)

  def test_compositors_not_in_app_selection(self):
    state = make_state()
    flags = AppSelectionFlags.empty(state.catalogue)
    flags.toggle("compositors", 0)
    self.assertTrue(selection_from_app_flags(flags, state.catalogue).is_empty)

  def test_driver_packages(self):
    intel_only = driver_packages({GPUVendor.INTEL}, None)
    self.assertIn("vulkan-intel", intel_only)

    skipped = driver_packages({GPUVendor.NVIDIA}, None)
    self.assertEqual(skipped, [])

    open_driver = driver_packages({GPUVendor.NVIDIA, GPUVendor.AMD}, NvidiaVariant.OPEN)
    self.assertIn("nvidia-open-dkms", open_driver)
    self.assertIn("vulkan-radeon", open_driver)
    self.assertEqual(open_driver, sorted(set(open_driver)))

  def test_gpu_summary(self):
    self.assertIsNone(format_gpu_summary({GPUVendor.UNKNOWN}, None))
    self.assertEqual(format_gpu_summary({GPUVendor.AMD, GPUVendor.INTEL}, None), "Intel, AMD")
    self.assertEqual(
      format_gpu_summary({GPUVendor.NVIDIA}, NvidiaVariant.OPEN),
      f"NVIDIA ({NvidiaVariant.OPEN.label})",
    )


if __name__ == "__main__":
  unittest.main()
