import json
import os
import re
import subprocess
import sys
import urllib.error
import urllib.request
from pathlib import Path
from typing import Any

from rich.console import Console

from kwimy.types import DefaultsConfig, DiskInfo, GPUVendor
from kwimy.validations import validate_config_json

console = Console()

GEOIP_URL = "http://ip-api.com/line/?fields=timezone"
GEOIP_TIMEOUT = 3
TIMEZONE_DETECT_LOG = "/run/kwimy/timezone-detect.log"
ZONEINFO_DIR = "/usr/share/zoneinfo/"


def get_resource_path(relative_path: str) -> str:
  """Absolute path of a file shipped inside the kwimy package, frozen onefile builds included."""
  if not getattr(sys, "frozen", False):
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), relative_path)

  base_path = getattr(sys, "_MEIPASS", None) or os.path.dirname(sys.executable)
  return os.path.join(base_path, relative_path)


def env_flag(name: str) -> bool:
  return os.environ.get(name) == "1"


def load_config() -> dict[str, Any]:
  """Load and validate the bundled config.json."""
  config_file = get_resource_path("config.json")
  try:
    with open(config_file, "r") as f:
      return validate_config_json(json.load(f))

  except (FileNotFoundError, json.JSONDecodeError) as e:
    console.print(f"\n[prompt.invalid]Could not read the bundled config.json: {e}[/]")
    sys.exit(1)

  except (KeyError, ValueError) as e:
    console.print(f"\n[prompt.invalid]The bundled config.json is malformed: {e}[/]")
    sys.exit(1)


def load_defaults() -> DefaultsConfig:
  data = load_config()["defaults"]
  return DefaultsConfig(**{k: str(data[k]) for k in DefaultsConfig.__annotations__})


def load_base_packages() -> list[str]:
  return [str(pkg) for pkg in load_config()["packages"]]


# =============================================================================
# Hardware
# =============================================================================


def list_disks() -> list[DiskInfo]:
  """List whole disks that can take an installation, skipping loop and optical devices."""
  result = subprocess.run(
    ["lsblk", "--json", "--nodeps", "--output", "NAME,SIZE,MODEL,TYPE,RM,RO"],
    capture_output=True,
    text=True,
    check=True,
  )
  devices = json.loads(result.stdout).get("blockdevices", [])

  # fmt: off
  return [
    DiskInfo(name=dev["name"], size=str(dev.get("size") or "?"), model=(dev.get("model") or "").strip())
    for dev in devices
    if dev.get("type") == "disk"
    and str(dev.get("ro")).lower() not in ("1", "true")
    and not dev["name"].startswith(("loop", "zram", "sr"))
  ]
  # fmt: on


GPU_CLASSES = ("vga compatible controller", "3d controller", "display controller")

# fmt: off
GPU_VENDOR_KEYWORDS: list[tuple[GPUVendor, tuple[str, ...]]] = [
  (GPUVendor.INTEL,  ("intel",)),
  (GPUVendor.AMD,    ("amd", "ati", "radeon")),
  (GPUVendor.NVIDIA, ("nvidia", "geforce", "quadro", "tesla")),
]
# fmt: on


def detect_gpu_vendors(warnings: list[str] | None = None) -> set[GPUVendor]:
  """
  Detect GPU vendors from the display controllers listed by lspci.

  Args:
      warnings: Optional list collecting reasons detection was skipped

  Returns:
      The vendors found, or {GPUVendor.UNKNOWN} when none can be told apart
  """
  try:
    result = subprocess.run(["lspci", "-nn"], capture_output=True, text=True, check=False)

  except FileNotFoundError:
    if warnings is not None:
      warnings.append("pciutils is not installed, GPU detection skipped")
    return {GPUVendor.UNKNOWN}

  if result.returncode != 0:
    if warnings is not None:
      warnings.append(f"lspci exited with status {result.returncode}, GPU detection skipped")
    return {GPUVendor.UNKNOWN}

  vendors: set[GPUVendor] = set()
  for line in result.stdout.lower().splitlines():
    if not any(kind in line for kind in GPU_CLASSES):
      continue
    words_in_line = set(re.findall(r"[a-z]+", line))
    vendors.update(vendor for vendor, words in GPU_VENDOR_KEYWORDS if words_in_line.intersection(words))

  return vendors or {GPUVendor.UNKNOWN}


# =============================================================================
# Keymaps and timezones
# =============================================================================


def _list_from_command(command: list[str], fallback: list[str]) -> list[str]:
  try:
    result = subprocess.run(command, capture_output=True, text=True, check=True)

  except (FileNotFoundError, subprocess.CalledProcessError):
    return fallback

  items = [line.strip() for line in result.stdout.splitlines() if line.strip()]
  return items or fallback


def load_keymaps() -> list[str]:
  return _list_from_command(["localectl", "list-keymaps"], ["us"])


def load_timezones() -> list[str]:
  return _list_from_command(["timedatectl", "list-timezones"], ["UTC"])


def find_index(items: list[str], value: str) -> int | None:
  try:
    return items.index(value)
  except ValueError:
    return None


def detect_timezone_local(timezones: list[str], localtime: str = "/etc/localtime") -> str | None:
  """Read the zone the live system already uses from the /etc/localtime symlink."""
  try:
    target = os.path.realpath(localtime)
  except OSError:
    return None

  if ZONEINFO_DIR not in target:
    return None

  zone = target.split(ZONEINFO_DIR, 1)[1]
  return zone if zone in timezones else None


def detect_timezone_geoip(timezones: list[str], url: str = GEOIP_URL) -> str | None:
  """Ask a geo-IP service for the current zone. Any failure means no answer."""
  try:
    with urllib.request.urlopen(url, timeout=GEOIP_TIMEOUT) as response:
      zone = response.read().decode("utf-8").strip()

  except (urllib.error.URLError, OSError, UnicodeDecodeError):
    return None

  return zone if zone in timezones else None


def append_timezone_detect_log(line: str, path: str = TIMEZONE_DETECT_LOG) -> None:
  try:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a") as f:
      print(line, file=f)
  except OSError:
    pass
