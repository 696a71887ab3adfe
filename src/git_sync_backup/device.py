import logging
import os
import plistlib
import subprocess
import sys
from collections.abc import Mapping
from pathlib import Path

from .constants import APP_NAME, DEVICE_ID_FILE, ENV_DEVICE_ID
from .errors import DeviceIdentityUnavailable

logger = logging.getLogger(APP_NAME)

_LINUX_ID_FILES = (Path("/var/lib/dbus/machine-id"), Path("/etc/machine-id"))


def resolve_alias(identifier: str, aliases: Mapping[str, str]) -> str:
    """Maps a device identifier or alias to its canonical device identifier.

    Resolution is single-hop: an identifier that is not a key of the alias
    table is already canonical and is returned unchanged.

    Args:
        identifier (str): A raw device id or an alias.
        aliases (Mapping[str, str]): Alias name to canonical device id.

    Returns:
        str: The canonical device id.
    """
    return aliases.get(identifier, identifier)


def aliases_for(device_id: str, aliases: Mapping[str, str]) -> list[str]:
    """Lists every alias that resolves to `device_id`."""
    return sorted(alias for alias, target in aliases.items() if target == device_id)


def get_device_id_file() -> Path:
    """Returns the path to the device id override file."""
    return Path(DEVICE_ID_FILE)


def _read_first_line(path: Path) -> str | None:
    try:
        if path.exists():
            value = path.read_text().strip()
            if value:
                return value
    except OSError as e:
        logger.debug(f"Could not read {path}: {e}")
    return None


def _darwin_platform_uuid() -> str | None:
    """Reads the hardware UUID (IOPlatformUUID) from the IORegistry."""
    try:
        xml = subprocess.check_output(
            ["ioreg", "-c", "IOPlatformExpertDevice", "-d", "1", "-r", "-a"],
            text=False,
            timeout=1,
        )
        data = plistlib.loads(xml)
        uuid = data[0].get("IOPlatformUUID")
        if isinstance(uuid, str) and uuid.strip():
            return uuid.strip()
    except Exception as e:
        logger.debug(f"ioreg lookup failed: {e}")
    return None


def _windows_machine_guid() -> str | None:
    """Reads the MachineGuid value from the Windows registry."""
    try:
        res = subprocess.run(
            [
                "reg",
                "query",
                r"HKLM\SOFTWARE\Microsoft\Cryptography",
                "/v",
                "MachineGuid",
            ],
            capture_output=True,
            text=True,
            timeout=2,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"Registry lookup failed: {e}")
        return None
    if res.returncode != 0:
        return None
    for line in res.stdout.splitlines():
        parts = line.split()
        if len(parts) >= 3 and parts[0] == "MachineGuid":
            return parts[-1]
    return None


def get_device_id() -> str:
    """Resolves the stable identifier of the current device.

    The resolution order is:
    1. The GSB_DEVICE_ID environment variable.
    2. User-configured ID file (~/.config/git-sync-backup/device_id).
    3. Linux dbus/systemd machine-id.
    4. macOS Hardware UUID (IOPlatformUUID).
    5. Windows MachineGuid.

    Hostnames are never used: they are neither unique nor stable.

    Returns:
        str: The canonical device identifier.

    Raises:
        DeviceIdentityUnavailable: If none of the sources yields an identifier.
    """
    if env_id := os.environ.get(ENV_DEVICE_ID, "").strip():
        return env_id

    if file_id := _read_first_line(get_device_id_file()):
        return file_id

    if sys.platform.startswith("linux"):
        for p in _LINUX_ID_FILES:
            if mid := _read_first_line(p):
                return mid

    if sys.platform == "darwin":
        if uuid := _darwin_platform_uuid():
            return uuid

    if sys.platform == "win32":
        if guid := _windows_machine_guid():
            return guid

    raise DeviceIdentityUnavailable()
