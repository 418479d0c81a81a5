# wg_busy/wireguard/manager.py
"""
WireGuard Manager

Thin wrapper over the wg / wg-quick binaries:
- Interface restart (down + up)
- Live reload via `wg syncconf` without dropping sessions
- Interface presence check
"""

import logging
import shlex
import subprocess
from pathlib import Path
from typing import List, Optional

from ..core.exceptions import WireGuardCommandError

logger = logging.getLogger('wg-busy.wireguard')


class WireGuardManager:
    """
    Runs interface-level commands for one WireGuard interface
    """

    def __init__(
        self,
        interface: str = "wg0",
        config_dir: str = "/etc/wireguard",
        timeout: float = 30.0,
        config_file: Optional[str] = None,
    ):
        """
        Initialize WireGuard manager

        Args:
            interface: WireGuard interface name
            config_dir: Config directory path
            timeout: Seconds before a command is abandoned
            config_file: Explicit config path, defaults to <config_dir>/<interface>.conf
        """
        self.interface = interface
        if config_file:
            self.config_file = Path(config_file)
            self.config_dir = self.config_file.parent
        else:
            self.config_dir = Path(config_dir)
            self.config_file = self.config_dir / f"{interface}.conf"
        self.timeout = timeout

    def _run(self, cmd: List[str]) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise WireGuardCommandError(" ".join(cmd), -1, str(e)) from e

    def _check(self, cmd: List[str]) -> str:
        result = self._run(cmd)
        if result.returncode != 0:
            raise WireGuardCommandError(" ".join(cmd), result.returncode, result.stderr or result.stdout)
        return result.stdout

    def check_wireguard_installed(self) -> bool:
        """Check if WireGuard tools are installed"""
        try:
            return self._run(["wg", "--version"]).returncode == 0
        except WireGuardCommandError:
            return False

    def is_interface_up(self) -> bool:
        try:
            return self._run(["wg", "show", self.interface]).returncode == 0
        except WireGuardCommandError:
            return False

    def bring_up_interface(self) -> None:
        logger.info(f"Bringing up {self.interface}")
        self._check(["wg-quick", "up", str(self.config_file)])
        logger.info(f"{self.interface} is now up")

    def bring_down_interface(self) -> bool:
        """Bring the interface down. Returns False if it was not up."""
        logger.info(f"Bringing down {self.interface}")
        try:
            self._check(["wg-quick", "down", str(self.config_file)])
            return True
        except WireGuardCommandError as e:
            logger.debug(f"wg-quick down ignored: {e}")
            return False

    def restart_interface(self) -> None:
        """Down (tolerating 'not up') then up, so the rendered config is applied"""
        logger.info(f"Restarting {self.interface}")
        self.bring_down_interface()
        self.bring_up_interface()

    def reload_config(self) -> None:
        """
        Apply the on-disk config to the running interface.

        `wg syncconf` only touches peers that changed, so active sessions
        survive. Needs bash for the process substitution.
        """
        iface = shlex.quote(self.interface)
        conf = shlex.quote(str(self.config_file))
        script = f"wg syncconf {iface} <(wg-quick strip {conf})"
        self._check(["bash", "-c", script])
        logger.debug(f"Reloaded {self.interface}")
