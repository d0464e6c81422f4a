"""
HTTP Logger System Proxy Configuration
======================================
Best-effort registration of the proxy as the operating system's active HTTP
and HTTPS proxy. Every implementation returns a bool and never raises; when
registration fails the user can still point clients at the proxy manually.

  • Windows – Internet Settings registry keys + WinINet refresh
  • macOS   – ``networksetup`` for every enabled network service
  • Linux   – GNOME ``gsettings`` (org.gnome.system.proxy)
  • other   – no-op
"""

from __future__ import annotations

import logging
import platform
import shutil
import subprocess
from typing import List, Optional

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT = 10


class SystemProxyConfigurator:
    """Toggles the OS-wide proxy setting."""

    name = "base"

    def set_proxy(self, enabled: bool, address: str, port: int) -> bool:
        raise NotImplementedError


class NullProxyConfigurator(SystemProxyConfigurator):
    """Used where no supported mechanism exists."""

    name = "none"

    def set_proxy(self, enabled: bool, address: str, port: int) -> bool:
        logger.debug(f"System proxy configuration is not supported on {platform.system()}")
        return False


class WindowsProxyConfigurator(SystemProxyConfigurator):
    name = "windows"

    INTERNET_SETTINGS = r"Software\Microsoft\Windows\CurrentVersion\Internet Settings"
    INTERNET_OPTION_SETTINGS_CHANGED = 39
    INTERNET_OPTION_REFRESH = 37

    def set_proxy(self, enabled: bool, address: str, port: int) -> bool:
        try:
            import ctypes
            import winreg

            with winreg.OpenKey(winreg.HKEY_CURRENT_USER, self.INTERNET_SETTINGS, 0, winreg.KEY_WRITE) as key:
                winreg.SetValueEx(key, "ProxyServer", 0, winreg.REG_SZ, f"{address}:{port}" if enabled else "")
                winreg.SetValueEx(key, "ProxyEnable", 0, winreg.REG_DWORD, 1 if enabled else 0)

            # Make running applications pick up the new settings
            internet_set_option = ctypes.windll.wininet.InternetSetOptionW
            internet_set_option(None, self.INTERNET_OPTION_SETTINGS_CHANGED, None, 0)
            internet_set_option(None, self.INTERNET_OPTION_REFRESH, None, 0)
        except (ImportError, OSError, AttributeError) as e:
            logger.warning(f"Could not update Windows proxy settings: {e}")
            return False
        return True


class _CommandConfigurator(SystemProxyConfigurator):
    """Shared subprocess plumbing for command-line based configurators."""

    def _run(self, cmd: List[str]) -> Optional[str]:
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=COMMAND_TIMEOUT,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"Command failed: {' '.join(cmd)}: {e}")
            return None
        if proc.returncode != 0:
            logger.warning(f"Command failed ({proc.returncode}): {' '.join(cmd)}: {proc.stderr.strip()}")
            return None
        return proc.stdout


class MacProxyConfigurator(_CommandConfigurator):
    name = "macos"

    def network_services(self) -> List[str]:
        output = self._run(["networksetup", "-listallnetworkservices"])
        if output is None:
            return []
        services = []
        for line in output.splitlines()[1:]:  # first line is a legend
            line = line.strip()
            # Disabled services are prefixed with an asterisk
            if line and not line.startswith("*"):
                services.append(line)
        return services

    def set_proxy(self, enabled: bool, address: str, port: int) -> bool:
        services = self.network_services()
        if not services:
            return False

        ok = True
        for service in services:
            if enabled:
                commands = [
                    ["networksetup", "-setwebproxy", service, address, str(port)],
                    ["networksetup", "-setsecurewebproxy", service, address, str(port)],
                ]
            else:
                commands = [
                    ["networksetup", "-setwebproxystate", service, "off"],
                    ["networksetup", "-setsecurewebproxystate", service, "off"],
                ]
            for cmd in commands:
                ok = self._run(cmd) is not None and ok
        return ok


class GnomeProxyConfigurator(_CommandConfigurator):
    name = "gnome"

    SCHEMA = "org.gnome.system.proxy"

    def set_proxy(self, enabled: bool, address: str, port: int) -> bool:
        if not enabled:
            return self._run(["gsettings", "set", self.SCHEMA, "mode", "none"]) is not None

        commands = []
        for scheme in ("http", "https"):
            commands.append(["gsettings", "set", f"{self.SCHEMA}.{scheme}", "host", address])
            commands.append(["gsettings", "set", f"{self.SCHEMA}.{scheme}", "port", str(port)])
        commands.append(["gsettings", "set", self.SCHEMA, "mode", "manual"])

        for cmd in commands:
            if self._run(cmd) is None:
                return False
        return True


def get_system_proxy_configurator(system: Optional[str] = None) -> SystemProxyConfigurator:
    """Pick the configurator for the current (or given) platform."""
    system = system or platform.system()
    if system == "Windows":
        return WindowsProxyConfigurator()
    if system == "Darwin" and shutil.which("networksetup"):
        return MacProxyConfigurator()
    if system == "Linux" and shutil.which("gsettings"):
        return GnomeProxyConfigurator()
    return NullProxyConfigurator()
