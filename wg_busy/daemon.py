#!/usr/bin/env python3
"""
wg-busy daemon

Main process that:
1. Loads the YAML state (or seeds first-run defaults)
2. Generates the server key on first run and renders wg0.conf
3. Restarts the WireGuard interface with the rendered config
4. Samples live interface statistics until SIGINT/SIGTERM
"""

import asyncio
import logging
import signal
import sys
from datetime import datetime, timezone
from typing import Optional

from .config import Settings
from .core.exceptions import WireGuardCommandError
from .core.store import ConfigStore
from .status.collector import StatsCollector
from .wireguard.manager import WireGuardManager
from .wireguard.peer_manager import PeerManager

logger = logging.getLogger('wg-busy')

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class WgBusyDaemon:
    """
    Owns the store, the interface and the stats collector for one process
    """

    def __init__(self, settings: Settings):
        """
        Initialize daemon

        Args:
            settings: Process settings
        """
        self.settings = settings
        self.interface = settings.interface

        # Components
        self.wg_manager = WireGuardManager(
            settings.interface,
            timeout=settings.command_timeout,
            config_file=settings.wg_config_path,
        )
        self.collector = StatsCollector(
            settings.interface,
            interval=settings.poll_interval,
            history_size=settings.history_size,
        )
        self.store: Optional[ConfigStore] = None
        self.peer_manager: Optional[PeerManager] = None

        # State
        self._running = False
        self._shutdown_event: Optional[asyncio.Event] = None

    def load(self) -> None:
        """Load state, make sure the server has keys and write wg0.conf"""
        self.store = ConfigStore.load(
            self.settings.config_path,
            self.settings.wg_config_path,
            wireguard=self.wg_manager,
            interface=self.interface,
        )
        self.peer_manager = PeerManager(self.store)
        self.peer_manager.ensure_server_keys()
        self.store.render_wg_config()

    def apply(self) -> datetime:
        """
        Restart the interface so the rendered config takes full effect.

        Returns:
            The new uptime origin
        """
        self.wg_manager.restart_interface()
        started_at = datetime.now(timezone.utc)
        self.collector.set_started_at(started_at)
        return started_at

    async def start(self):
        """Start the daemon and run until a shutdown signal arrives"""
        logger.info("Starting wg-busy...")
        self._shutdown_event = asyncio.Event()

        self.load()

        if not self.wg_manager.check_wireguard_installed():
            logger.warning("WireGuard tools not found, the interface will not come up")

        started_at = datetime.now(timezone.utc)
        try:
            started_at = await asyncio.to_thread(self.apply)
        except WireGuardCommandError as e:
            logger.warning(f"Could not start {self.interface}: {e}")

        self._running = True
        self.collector.start(started_at)
        self._install_signal_handlers()

        logger.info(f"wg-busy running on {self.interface}")

        await self._shutdown_event.wait()
        await self.collector.stop()

        logger.info("wg-busy stopped")

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._signal_shutdown)

    def _signal_shutdown(self):
        """Handle shutdown signal"""
        logger.info("Received shutdown signal")
        self.stop()

    def stop(self):
        self._running = False
        if self._shutdown_event is not None:
            self._shutdown_event.set()


def setup_logging(level: str, log_file: Optional[str] = None) -> None:
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )


def main():
    """Entry point"""
    import argparse

    settings = Settings()

    parser = argparse.ArgumentParser(description="WireGuard declarative state manager")
    parser.add_argument(
        "--config",
        default=settings.config_path,
        help="YAML state file",
    )
    parser.add_argument(
        "--wg-config",
        default=settings.wg_config_path,
        help="Rendered WireGuard config path",
    )
    parser.add_argument(
        "--interface",
        default=settings.interface,
        help="WireGuard interface name",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level.upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level",
    )

    args = parser.parse_args()

    settings = settings.model_copy(update={
        "config_path": args.config,
        "wg_config_path": args.wg_config,
        "interface": args.interface,
        "log_level": args.log_level,
    })
    setup_logging(settings.log_level, settings.log_file)

    daemon = WgBusyDaemon(settings)

    try:
        asyncio.run(daemon.start())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
