"""
Installation engine.

Partitions the target disk, bootstraps Arch Linux into /mnt and configures it.
Every phase reports through the event sink; command output is streamed as log
lines. Secrets are piped through stdin and never appear in a command line.
"""

import logging
import os
import shlex
import subprocess
from collections.abc import Callable
from textwrap import dedent

from kwimy.events import Done, EventSink, Log, Progress, StepStatus, StepUpdate
from kwimy.types import InstallConfig

logger = logging.getLogger(__name__)

STEP_NAMES = [
  "Partition disk",
  "Create filesystems",
  "Install base system",
  "Configure system",
  "Configure swap",
  "Install drivers",
  "Install applications",
  "Install bootloader",
  "Finalize",
]

MOUNT_ROOT = "/mnt"
CRYPT_NAME = "cryptroot"
FAILED_PACKAGES_FILE = "/var/log/kwimy-failed-packages.txt"
BUILD_SUDOERS = "/etc/sudoers.d/kwimy-build"
AUR_HELPER = "yay"

BTRFS_SUBVOLUMES = [
  ("@", ""),
  ("@home", "/home"),
  ("@snapshots", "/.snapshots"),
  ("@var_cache", "/var/cache"),
  ("@var_log", "/var/log"),
]
BTRFS_OPTIONS = "compress=zstd,noatime"


class CommandError(Exception):
  def __init__(self, command: str, returncode: int) -> None:
    super().__init__(f"Command '{command}' failed with exit status {returncode}")
    self.command: str = command
    self.returncode: int = returncode


class Runner:
  """Runs shell commands for one installation, or only logs them in dry mode."""

  def __init__(self, emit: EventSink, dry: bool = False) -> None:
    self.emit = emit
    self.dry = dry

  def log(self, line: str) -> None:
    self.emit(Log(line))

  def cmd(self, command: str, stdin_data: str | None = None) -> None:
    if self.dry:
      suffix = " (with stdin data)" if stdin_data is not None else ""
      self.log(f"[DRY RUN] {command}{suffix}")
      return

    logger.debug("running: %s", command)
    self.log(f"$ {command}")
    process = subprocess.Popen(
      command,
      shell=True,
      stdin=subprocess.PIPE if stdin_data is not None else subprocess.DEVNULL,
      stdout=subprocess.PIPE,
      stderr=subprocess.STDOUT,
      text=True,
    )
    if stdin_data is not None and process.stdin is not None:
      _ = process.stdin.write(stdin_data)
      process.stdin.close()

    assert process.stdout is not None
    for line in process.stdout:
      line = line.rstrip()
      if line:
        self.log(line)

    returncode = process.wait()
    if returncode != 0:
      raise CommandError(command, returncode)

  def scmd(self, command: str, stdin_data: str) -> None:
    """Execute a command with sensitive stdin data without exposing it in the process list."""
    self.cmd(command, stdin_data)

  def chroot(self, command: str, stdin_data: str | None = None) -> None:
    self.cmd(f"arch-chroot {MOUNT_ROOT} {command}", stdin_data)

  def output(self, command: str, placeholder: str) -> str:
    if self.dry:
      self.log(f"[DRY RUN] {command}")
      return placeholder

    result = subprocess.run(command, shell=True, check=False, capture_output=True, text=True)
    if result.returncode != 0:
      raise CommandError(command, result.returncode)
    return result.stdout.strip()

  def write(self, lines: list[str], path: str) -> None:
    if self.dry:
      self.log(f"[DRY RUN] Writing to {path}:")
      for line in lines:
        self.log(f"  {line}")
      return

    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w") as f:
      for line in lines:
        print(line, file=f)


type Phase = Callable[[Runner, InstallConfig], StepStatus | None]


def _root_device(config: InstallConfig) -> str:
  return f"/dev/mapper/{CRYPT_NAME}" if config.encrypt_disk else config.disk.partition_path(2)


def _target(path: str) -> str:
  return f"{MOUNT_ROOT}{path}"


# =============================================================================
# Disk
# =============================================================================


def partition_disk(run: Runner, config: InstallConfig) -> None:
  disk = config.disk.device_path
  run.cmd(f"wipefs -af {disk}")
  run.cmd(f"sgdisk -Zo {disk}")
  run.cmd(f"parted -s {disk} mklabel gpt")
  run.cmd(f"parted -s {disk} mkpart ESP fat32 1MiB 1025MiB")
  run.cmd(f"parted -s {disk} mkpart ROOT 1025MiB 100%")
  run.cmd(f"parted -s {disk} set 1 esp on")
  run.cmd(f"partprobe {disk}")


def create_filesystems(run: Runner, config: InstallConfig) -> None:
  esp = config.disk.partition_path(1)
  root_partition = config.disk.partition_path(2)
  run.cmd(f"mkfs.vfat -F32 -n ESP {esp}")

  if config.encrypt_disk:
    run.scmd(f"cryptsetup luksFormat --type luks2 --batch-mode {root_partition} -d -", config.luks_password)
    run.scmd(f"cryptsetup luksOpen {root_partition} {CRYPT_NAME} -d -", config.luks_password)

  root = _root_device(config)
  run.cmd(f"mkfs.btrfs -f -L {shlex.quote(config.hostname)} {root}")
  run.cmd(f"mount -o {BTRFS_OPTIONS} {root} {MOUNT_ROOT}")
  for subvolume, _ in BTRFS_SUBVOLUMES:
    run.cmd(f"btrfs subvolume create {MOUNT_ROOT}/{subvolume}")
  run.cmd(f"umount {MOUNT_ROOT}")

  for subvolume, path in BTRFS_SUBVOLUMES:
    run.cmd(f"mount -o X-mount.mkdir,{BTRFS_OPTIONS},subvol={subvolume} {root} {_target(path)}")

  run.cmd(f"mount -o X-mount.mkdir {esp} {_target('/boot')}")


# =============================================================================
# System
# =============================================================================


def install_base_system(run: Runner, config: InstallConfig) -> None:
  packages = [*config.base_packages, config.kernel_package, config.kernel_headers]
  unique = list(dict.fromkeys(pkg for pkg in packages if pkg))
  run.cmd(f"pacstrap -K {MOUNT_ROOT} {' '.join(unique)}")


def configure_system(run: Runner, config: InstallConfig) -> None:
  run.cmd(f"genfstab -U {MOUNT_ROOT} >> {_target('/etc/fstab')}")

  run.write([config.hostname], _target("/etc/hostname"))
  run.write(
    ["127.0.0.1 localhost", "::1 localhost", f"127.0.1.1 {config.hostname}.localdomain {config.hostname}"],
    _target("/etc/hosts"),
  )
  run.write([f"KEYMAP={config.keymap}"], _target("/etc/vconsole.conf"))
  run.write(["en_US.UTF-8 UTF-8"], _target("/etc/locale.gen"))
  run.write(["LANG=en_US.UTF-8"], _target("/etc/locale.conf"))

  run.chroot(f"ln -sf /usr/share/zoneinfo/{shlex.quote(config.timezone)} /etc/localtime")
  run.chroot("hwclock --systohc")
  run.chroot("locale-gen")

  run.chroot(f"useradd --create-home --groups wheel --shell /bin/bash {shlex.quote(config.username)}")
  run.chroot("chpasswd", f"{config.username}:{config.user_password}\n")
  run.write(["%wheel ALL=(ALL:ALL) ALL"], _target("/etc/sudoers.d/10-wheel"))
  run.chroot("systemctl enable NetworkManager")

  hooks = "base udev autodetect microcode modconf kms keyboard keymap consolefont block"
  if config.encrypt_disk:
    hooks += " encrypt"
  run.write([f"HOOKS=({hooks} filesystems fsck)"], _target("/etc/mkinitcpio.conf.d/kwimy.conf"))
  run.chroot("mkinitcpio -P")


def configure_swap(run: Runner, config: InstallConfig) -> StepStatus | None:
  if not config.swap_enabled:
    run.log("Swap disabled, skipping")
    return StepStatus.SKIPPED

  run.chroot("pacman -S --noconfirm --needed zram-generator")
  run.write(
    ["[zram0]", "zram-size = min(ram / 2, 8192)", "compression-algorithm = zstd"],
    _target("/etc/systemd/zram-generator.conf"),
  )
  return None


def install_drivers(run: Runner, config: InstallConfig) -> StepStatus | None:
  if not config.driver_packages:
    run.log("No driver packages selected, skipping")
    return StepStatus.SKIPPED

  run.chroot(f"pacman -S --noconfirm --needed {' '.join(config.driver_packages)}")
  if any(pkg.startswith("nvidia") for pkg in config.driver_packages):
    run.write(["options nvidia_drm modeset=1"], _target("/etc/modprobe.d/nvidia.conf"))
    run.chroot("mkinitcpio -P")
  return None


# =============================================================================
# Applications
# =============================================================================


def _as_user(config: InstallConfig, command: str) -> str:
  return f"runuser -u {shlex.quote(config.username)} -- bash -c {shlex.quote(command)}"


def install_aur_packages(run: Runner, config: InstallConfig) -> list[str]:
  """
  Build AUR packages as the new user. Returns the packages that failed.

  The user gets passwordless sudo only while the builds run.
  """
  if config.offline_only:
    run.log("Offline mode, skipping AUR packages")
    return list(config.extra_aur_packages)

  run.write([f"{config.username} ALL=(ALL:ALL) NOPASSWD: ALL"], _target(BUILD_SUDOERS))
  try:
    try:
      build = (
        f"cd /tmp && rm -rf {AUR_HELPER}-bin && git clone https://aur.archlinux.org/{AUR_HELPER}-bin.git"
        f" && cd {AUR_HELPER}-bin && makepkg -si --noconfirm"
      )
      run.chroot(_as_user(config, build))
    except CommandError as e:
      logger.warning("AUR helper build failed: %s", e)
      run.log(f"Could not build {AUR_HELPER}, skipping AUR packages")
      return list(config.extra_aur_packages)

    failed: list[str] = []
    for package in config.extra_aur_packages:
      try:
        run.chroot(_as_user(config, f"{AUR_HELPER} -S --noconfirm --needed {shlex.quote(package)}"))
      except CommandError as e:
        logger.warning("AUR package %s failed: %s", package, e)
        run.log(f"Optional package {package} failed to install")
        failed.append(package)

    return failed

  finally:
    run.cmd(f"rm -f {_target(BUILD_SUDOERS)}")


def install_applications(run: Runner, config: InstallConfig) -> StepStatus | None:
  if not config.extra_packages:
    run.log("No applications selected, skipping")
    return StepStatus.SKIPPED

  if config.compositor and config.hyprland_selected:
    run.log(f"Compositor: {config.compositor}")

  if config.extra_pacman_packages:
    run.chroot(f"pacman -S --noconfirm --needed {' '.join(config.extra_pacman_packages)}")

  if config.extra_aur_packages:
    failed = install_aur_packages(run, config)
    if failed:
      run.write(failed, _target(FAILED_PACKAGES_FILE))
  return None


# =============================================================================
# Boot
# =============================================================================


def install_bootloader(run: Runner, config: InstallConfig) -> None:
  cmdline = "quiet rootflags=subvol=@"
  if config.encrypt_disk:
    uuid = run.output(
      f"blkid --match-tag UUID --output value {config.disk.partition_path(2)}",
      "DRY-RUN-CRYPT-UUID",
    )
    cmdline += f" cryptdevice=UUID={uuid}:{CRYPT_NAME} root=/dev/mapper/{CRYPT_NAME}"

  run.write(
    dedent(f"""\
      GRUB_DEFAULT=0
      GRUB_TIMEOUT=5
      GRUB_DISTRIBUTOR="kwimy"
      GRUB_CMDLINE_LINUX_DEFAULT="{cmdline}"
      GRUB_CMDLINE_LINUX=""
      GRUB_PRELOAD_MODULES="part_gpt part_msdos"
    """).splitlines(),
    _target("/etc/default/grub"),
  )
  run.chroot("grub-install --target=x86_64-efi --efi-directory=/boot --bootloader-id=kwimy --recheck")
  run.chroot("grub-mkconfig -o /boot/grub/grub.cfg")


def finalize(run: Runner, config: InstallConfig) -> None:
  run.cmd("sync")


PHASES: list[Phase] = [
  partition_disk,
  create_filesystems,
  install_base_system,
  configure_system,
  configure_swap,
  install_drivers,
  install_applications,
  install_bootloader,
  finalize,
]


def run_installer(config: InstallConfig, emit: EventSink, dry: bool = False) -> None:
  """
  Run every phase in order.

  Emits one Running and one terminal status per phase, a Progress after each
  phase and a final Done. A failing phase is reported as Failed and the error
  propagates to the caller, which reports it as Done(error).
  """
  run = Runner(emit, dry)
  total = len(PHASES)
  if dry:
    run.log("Dry run: commands are logged, not executed")

  for index, phase in enumerate(PHASES):
    emit(StepUpdate(index, StepStatus.RUNNING))
    try:
      status = phase(run, config)
    except Exception as e:
      emit(StepUpdate(index, StepStatus.FAILED, str(e)))
      raise

    emit(StepUpdate(index, status or StepStatus.DONE))
    emit(Progress((index + 1) / total))

  emit(Done(None))
