"""
Validation functions for kwimy.

This module contains the validators used by the wizard for hostnames,
usernames and passwords, the Wi-Fi error classifier, and the shape checks
applied to the bundled config.json.
"""

import re
from typing import Any

RESERVED_USERNAME = "root"
UTC_VARIANTS = ("UTC", "Etc/UTC", "Etc/GMT", "GMT")
WIFI_AUTH_KEYWORDS = ("password", "secrets", "auth", "authentication", "access denied")

_USERNAME_PATTERN = re.compile(r"[a-z][a-z0-9_-]*")
_HOSTNAME_PATTERN = re.compile(r"[A-Za-z0-9-]{1,63}")


# =============================================================================
# Validation Functions
# =============================================================================
# Functions that validate user input and return a boolean


def validate_username(username: str) -> bool:
  """Lowercase letter first, then lowercase letters, digits, '_' or '-'. Never root."""
  if not username or username == RESERVED_USERNAME:
    return False

  return bool(_USERNAME_PATTERN.fullmatch(username))


def validate_hostname(hostname: str) -> bool:
  """A single label of 1-63 ASCII letters, digits or hyphens."""
  return bool(_HOSTNAME_PATTERN.fullmatch(hostname))


def validate_password(password: str) -> bool:
  return len(password) > 0


def is_utc_variant(timezone: str) -> bool:
  return timezone in UTC_VARIANTS


def is_wifi_auth_error(message: str) -> bool:
  """Tell authentication failures apart from every other connection failure."""
  msg = message.lower()
  return any(keyword in msg for keyword in WIFI_AUTH_KEYWORDS)


# =============================================================================
# Config Validation
# =============================================================================


def validate_config_json(data: Any) -> dict[str, Any]:
  """Validate and return config.json data with proper typing."""
  if not isinstance(data, dict):
    raise ValueError("config.json must be an object")

  required_keys = {"defaults", "packages", "gpu_packages", "applications"}
  missing_keys = required_keys - data.keys()
  if missing_keys:
    raise KeyError(f"Missing required keys: {sorted(missing_keys)}")

  defaults = data["defaults"]
  if not isinstance(defaults, dict):
    raise ValueError("defaults must be an object")

  missing_defaults = {"hostname", "keymap", "timezone", "kernel", "kernel_headers"} - defaults.keys()
  if missing_defaults:
    raise KeyError(f"Missing defaults: {sorted(missing_defaults)}")

  if not isinstance(data["packages"], list):
    raise ValueError("packages must be a list")

  if not isinstance(data["gpu_packages"], dict):
    raise ValueError("gpu_packages must be an object")

  applications = data["applications"]
  if not isinstance(applications, dict):
    raise ValueError("applications must be an object")

  for category, choices in applications.items():
    if not isinstance(choices, list):
      raise ValueError(f"applications.{category} must be a list")

    for choice in choices:
      if not isinstance(choice, dict) or "label" not in choice:
        raise ValueError(f"Each entry in applications.{category} must have a label")

  return data
