import json
import os
import subprocess
import tempfile
import unittest
from unittest.mock import MagicMock, patch

from kwimy import utils
from kwimy.types import GPUVendor


def completed(stdout: str = "", returncode: int = 0) -> MagicMock:
  result = MagicMock()
  result.stdout = stdout
  result.returncode = returncode
  return result


class TestListDisks(unittest.TestCase):
  @patch("kwimy.utils.subprocess.run")
  def test_filters_non_disks(self, mock_run):
    mock_run.return_value = completed(
      json.dumps(
        {
          "blockdevices": [
            {"name": "sda", "size": "500G", "model": "Samsung SSD ", "type": "disk", "rm": False, "ro": False},
            {"name": "loop0", "size": "700M", "model": None, "type": "loop", "rm": False, "ro": True},
            {"name": "sr0", "size": "1G", "model": "DVD", "type": "rom", "rm": True, "ro": False},
            {"name": "zram0", "size": "4G", "model": None, "type": "disk", "rm": False, "ro": False},
            {"name": "sdb", "size": "8G", "model": "Locked", "type": "disk", "rm": True, "ro": "1"},
            {"name": "nvme0n1", "size": "1T", "model": None, "type": "disk", "rm": False, "ro": False},
          ]
        }
      )
    )

    disks = utils.list_disks()

    self.assertEqual([d.name for d in disks], ["sda", "nvme0n1"])
    self.assertEqual(disks[0].model, "Samsung SSD")
    self.assertEqual(disks[1].label, "nvme0n1 (1T)")

  @patch("kwimy.utils.subprocess.run")
  def test_no_devices(self, mock_run):
    mock_run.return_value = completed("{}")
    self.assertEqual(utils.list_disks(), [])


class TestDetectGpuVendors(unittest.TestCase):
  @patch("kwimy.utils.subprocess.run")
  def test_hybrid_laptop(self, mock_run):
    mock_run.return_value = completed(
      "00:02.0 VGA compatible controller [0300]: Intel Corporation UHD Graphics [8086:9bc4]\n"
      "01:00.0 3D controller [0302]: NVIDIA Corporation TU117M [GeForce GTX 1650 Mobile] [10de:1f99]\n"
      "00:1f.3 Audio device [0403]: Intel Corporation Comet Lake PCH cAVS [8086:06c8]\n"
    )
    self.assertEqual(utils.detect_gpu_vendors(), {GPUVendor.INTEL, GPUVendor.NVIDIA})

  @patch("kwimy.utils.subprocess.run")
  def test_amd_card(self, mock_run):
    mock_run.return_value = completed(
      "03:00.0 VGA compatible controller [0300]: Advanced Micro Devices, Inc. [AMD/ATI] Navi 22 [1002:73df]\n"
    )
    self.assertEqual(utils.detect_gpu_vendors(), {GPUVendor.AMD})

  @patch("kwimy.utils.subprocess.run")
  def test_no_display_controller(self, mock_run):
    mock_run.return_value = completed("00:1f.3 Audio device [0403]: Intel Corporation Audio [8086:06c8]\n")
    self.assertEqual(utils.detect_gpu_vendors(), {GPUVendor.UNKNOWN})

  @patch("kwimy.utils.subprocess.run")
  def test_lspci_failure_is_reported(self, mock_run):
    mock_run.return_value = completed(returncode=1)
    warnings: list[str] = []

    self.assertEqual(utils.detect_gpu_vendors(warnings), {GPUVendor.UNKNOWN})
    self.assertEqual(len(warnings), 1)

  @patch("kwimy.utils.subprocess.run", side_effect=FileNotFoundError)
  def test_missing_lspci(self, _mock_run):
    warnings: list[str] = []
    self.assertEqual(utils.detect_gpu_vendors(warnings), {GPUVendor.UNKNOWN})
    self.assertIn("pciutils", warnings[0])


class TestKeymapsAndTimezones(unittest.TestCase):
  @patch("kwimy.utils.subprocess.run")
  def test_command_output(self, mock_run):
    mock_run.return_value = completed("de\n\nfi\nus\n")
    self.assertEqual(utils.load_keymaps(), ["de", "fi", "us"])

  @patch("kwimy.utils.subprocess.run", side_effect=subprocess.CalledProcessError(1, "timedatectl"))
  def test_fallback(self, _mock_run):
    self.assertEqual(utils.load_timezones(), ["UTC"])

  def test_find_index(self):
    self.assertEqual(utils.find_index(["a", "b"], "b"), 1)
    self.assertIsNone(utils.find_index(["a", "b"], "c"))

  def test_local_timezone_from_symlink(self):
    with tempfile.TemporaryDirectory() as tmp:
      zone_dir = os.path.join(tmp, "usr", "share", "zoneinfo", "Europe")
      os.makedirs(zone_dir)
      zone_file = os.path.join(zone_dir, "Helsinki")
      open(zone_file, "w").close()
      link = os.path.join(tmp, "localtime")
      os.symlink(zone_file, link)

      self.assertEqual(utils.detect_timezone_local(["Europe/Helsinki"], link), "Europe/Helsinki")
      self.assertIsNone(utils.detect_timezone_local(["UTC"], link))

  def test_local_timezone_outside_zoneinfo(self):
    with tempfile.NamedTemporaryFile() as f:
      self.assertIsNone(utils.detect_timezone_local(["UTC"], f.name))

  @patch("kwimy.utils.urllib.request.urlopen")
  def test_geoip(self, mock_urlopen):
    response = MagicMock()
    response.read.return_value = b"Europe/Lisbon\n"
    mock_urlopen.return_value.__enter__.return_value = response

    self.assertEqual(utils.detect_timezone_geoip(["Europe/Lisbon"]), "Europe/Lisbon")
    self.assertIsNone(utils.detect_timezone_geoip(["UTC"]))

  @patch("kwimy.utils.urllib.request.urlopen", side_effect=OSError("offline"))
  def test_geoip_failure(self, _mock_urlopen):
    self.assertIsNone(utils.detect_timezone_geoip(["UTC"]))

  def test_detect_log_appends(self):
    with tempfile.TemporaryDirectory() as tmp:
      path = os.path.join(tmp, "nested", "detect.log")
      utils.append_timezone_detect_log("one", path)
      utils.append_timezone_detect_log("two", path)

      with open(path) as f:
        self.assertEqual(f.read(), "one\ntwo\n")


class TestConfig(unittest.TestCase):
  def test_bundled_config_is_valid(self):
    defaults = utils.load_defaults()
    self.assertTrue(defaults["hostname"])
    self.assertIn("base", utils.load_base_packages())

  def test_env_flag(self):
    with patch.dict(os.environ, {"KWIMY_TEST_FLAG": "1"}):
      self.assertTrue(utils.env_flag("KWIMY_TEST_FLAG"))
    with patch.dict(os.environ, {"KWIMY_TEST_FLAG": "yes"}):
      self.assertFalse(utils.env_flag("KWIMY_TEST_FLAG"))


if __name__ == "__main__":
  unittest.main()
