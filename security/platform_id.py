"""
Platform identity sources.

Each source collects semi-stable hardware/OS signals as opaque strings, in
priority order:

1. OS installation identifier (ProductId, systemd/dbus machine-id, IOPlatformUUID)
2. CPU descriptor
3. System UUID (where the OS exposes it)
4. MAC address of the primary non-loopback interface
5. Hostname

Every individual signal is best-effort. collect() only fails when nothing at
all could be read.
"""

import logging
import socket
import subprocess
import sys
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from .errors import CollectionError

logger = logging.getLogger(__name__)

IFF_UP = 0x1  # administrative up bit in /sys/class/net/<iface>/flags


def _read_text(path: Path) -> Optional[str]:
    """Read and strip a small text file; None if absent or unreadable."""
    try:
        value = path.read_text(encoding="utf-8", errors="ignore").strip()
    except OSError:
        return None
    return value or None


def _int_attr(path: Path, base: int = 10) -> int:
    """Integer sysfs attribute (e.g. "0x1003", "2"); 0 if absent or garbled."""
    text = _read_text(path)
    if not text:
        return 0
    try:
        return int(text, base)
    except ValueError:
        return 0


def _hostname() -> Optional[str]:
    try:
        return socket.gethostname() or None
    except OSError:
        return None


def _node_mac() -> Optional[str]:
    """MAC address reported by uuid.getnode(), unless it is a random fallback."""
    node = uuid.getnode()
    # getnode() sets the multicast bit when it had to invent a random number
    if (node >> 40) & 0x01:
        return None
    return ":".join(f"{(node >> shift) & 0xFF:02x}" for shift in range(40, -1, -8))


class IdentitySource(ABC):
    """Collects machine-specific signals for fingerprinting."""

    @abstractmethod
    def platform_signals(self) -> list[str]:
        """OS-specific signals (installation id, CPU, system UUID)."""

    def mac_address(self) -> Optional[str]:
        """Hardware address of the primary network interface."""
        return _node_mac()

    def hostname(self) -> Optional[str]:
        return _hostname()

    def collect(self) -> list[str]:
        """
        Collect all available signals.

        Returns:
            Ordered list of signal strings

        Raises:
            CollectionError: If no signal is available on this host
        """
        signals: list[str] = []

        try:
            signals.extend(s for s in self.platform_signals() if s)
        except OSError as e:
            logger.debug(f"Platform signals unavailable: {e}")

        for probe in (self.mac_address, self.hostname):
            try:
                value = probe()
            except OSError as e:
                logger.debug(f"Signal probe {probe.__name__} failed: {e}")
                continue
            if value:
                signals.append(value)

        if not signals:
            raise CollectionError("could not collect any machine-specific data")

        return signals


class LinuxIdentitySource(IdentitySource):
    """Signals from /etc, /proc and /sys on Linux."""

    MACHINE_ID_PATHS = (Path("/etc/machine-id"), Path("/var/lib/dbus/machine-id"))
    CPUINFO_PATH = Path("/proc/cpuinfo")
    PRODUCT_UUID_PATH = Path("/sys/class/dmi/id/product_uuid")
    NET_CLASS_DIR = Path("/sys/class/net")

    def machine_id(self) -> Optional[str]:
        # dbus copy is only consulted when systemd's is missing
        for path in self.MACHINE_ID_PATHS:
            value = _read_text(path)
            if value:
                return value
        return None

    def cpu_info(self) -> Optional[str]:
        text = _read_text(self.CPUINFO_PATH)
        if not text:
            return None

        model = serial = ""
        for line in text.splitlines():
            if ":" not in line:
                continue
            name, value = line.split(":", 1)
            name = name.strip()
            if name == "model name" and not model:
                model = value.strip()
            elif name == "Serial":
                serial = value.strip()

        if not model:
            return None
        return f"{model}|{serial}" if serial else model

    def system_uuid(self) -> Optional[str]:
        # Usually root-only
        return _read_text(self.PRODUCT_UUID_PATH)

    def platform_signals(self) -> list[str]:
        return [s for s in (self.machine_id(), self.cpu_info(), self.system_uuid()) if s]

    def mac_address(self) -> Optional[str]:
        """
        First administratively up physical interface, in ifindex order.

        Link state (cable, carrier) is not consulted. Virtual interfaces such
        as docker0 or bridges have no device entry and are skipped.
        """
        if not self.NET_CLASS_DIR.is_dir():
            return _node_mac()

        candidates = []
        for iface in self.NET_CLASS_DIR.iterdir():
            if iface.name == "lo" or not (iface / "device").exists():
                continue
            if not _int_attr(iface / "flags", base=16) & IFF_UP:
                continue
            candidates.append((_int_attr(iface / "ifindex"), iface.name, iface))

        for _, _, iface in sorted(candidates):
            address = _read_text(iface / "address")
            if address and address != "00:00:00:00:00:00":
                return address

        return None


class WindowsIdentitySource(IdentitySource):
    """Signals from the Windows registry."""

    PRODUCT_KEY = r"SOFTWARE\Microsoft\Windows NT\CurrentVersion"
    CPU_KEY = r"HARDWARE\DESCRIPTION\System\CentralProcessor\0"

    @staticmethod
    def _query(subkey: str, name: str) -> Optional[str]:
        import winreg

        try:
            with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, subkey) as key:
                value, _ = winreg.QueryValueEx(key, name)
        except OSError:
            return None
        return str(value).strip() or None

    def product_id(self) -> Optional[str]:
        return self._query(self.PRODUCT_KEY, "ProductId")

    def cpu_info(self) -> Optional[str]:
        name = self._query(self.CPU_KEY, "ProcessorNameString")
        if not name:
            return None
        identifier = self._query(self.CPU_KEY, "Identifier")
        return f"{name}|{identifier}" if identifier else name

    def platform_signals(self) -> list[str]:
        return [s for s in (self.product_id(), self.cpu_info()) if s]


class MacIdentitySource(IdentitySource):
    """Signals from ioreg/sysctl on macOS."""

    @staticmethod
    def _run(command: list[str]) -> Optional[str]:
        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=10,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired):
            return None
        return completed.stdout.strip() or None

    def platform_uuid(self) -> Optional[str]:
        output = self._run(["ioreg", "-rd1", "-c", "IOPlatformExpertDevice"])
        if not output:
            return None
        for line in output.splitlines():
            if "IOPlatformUUID" in line:
                return line.split("=", 1)[-1].strip().strip('"') or None
        return None

    def cpu_info(self) -> Optional[str]:
        return self._run(["sysctl", "-n", "machdep.cpu.brand_string"])

    def platform_signals(self) -> list[str]:
        return [s for s in (self.platform_uuid(), self.cpu_info()) if s]


class FixedIdentitySource(IdentitySource):
    """Returns a fixed list of signals. Used for tests and simulations."""

    def __init__(self, signals: list[str]):
        self._signals = list(signals)

    def platform_signals(self) -> list[str]:
        return list(self._signals)

    def mac_address(self) -> Optional[str]:
        return None

    def hostname(self) -> Optional[str]:
        return None


def default_source() -> IdentitySource:
    """Pick the identity source for the running OS."""
    if sys.platform == "win32":
        return WindowsIdentitySource()
    if sys.platform == "darwin":
        return MacIdentitySource()
    return LinuxIdentitySource()
