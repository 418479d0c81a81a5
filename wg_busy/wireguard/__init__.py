"""
WireGuard Module

Everything that speaks WireGuard's formats or binaries:
- wg0.conf and client config rendering
- wg-quick / wg syncconf invocation
- Peer lifecycle on top of the config store (wireguard.peer_manager)
"""

from .config_builder import client_config_filename, render_client_config, render_server_config
from .manager import WireGuardManager

__all__ = [
    "WireGuardManager",
    "render_server_config",
    "render_client_config",
    "client_config_filename",
]
