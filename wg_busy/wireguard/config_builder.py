# wg_busy/wireguard/config_builder.py
"""
WireGuard Configuration Builder
Renders wg0.conf for the server and .conf files for peers
"""

import re
from typing import List, Optional, Sequence

from ..core.keys import public_key_from_private
from ..core.models import AppState, Peer, ServerConfig

ROUTE_ALL = "0.0.0.0/0, ::/0"
ENDPOINT_PLACEHOLDER_HOST = "SERVER_IP"

_FILENAME_UNSAFE = re.compile(r"[^A-Za-z0-9_\-]")


def _script_lines(script: str) -> List[str]:
    # wg-quick takes one command per key line; multi-line scripts become repeated keys
    return [line.strip() for line in script.splitlines() if line.strip()]


def effective_allowed_ips(peer: Peer) -> str:
    """
    AllowedIPs written on the server side.

    Exit nodes must accept return traffic for every destination, so their
    stored address is replaced with a catch-all.
    """
    if peer.is_exit_node:
        return ROUTE_ALL
    return peer.allowed_ips


def render_server_config(
    state: AppState,
    post_up_cmds: Optional[Sequence[str]] = None,
    post_down_cmds: Optional[Sequence[str]] = None,
) -> str:
    """
    Build wg0.conf

    Args:
        state: Full application state
        post_up_cmds: Generated routing commands run after the interface is up
        post_down_cmds: Generated teardown commands run after it goes down

    Returns:
        Configuration string
    """
    s = state.server
    lines = [
        "[Interface]",
        f"PrivateKey = {s.private_key}",
        f"ListenPort = {s.listen_port}",
        f"Address = {s.address}",
    ]

    if s.dns:
        lines.append(f"DNS = {s.dns}")
    if s.mtu:
        lines.append(f"MTU = {s.mtu}")
    if s.table:
        lines.append(f"Table = {s.table}")
    if s.fw_mark:
        lines.append(f"FwMark = {s.fw_mark}")
    if s.save_config:
        lines.append("SaveConfig = true")

    # Hook order: user PreUp, user PostUp, generated up, generated down,
    # user PostDown, user PreDown
    lines.extend(f"PreUp = {cmd}" for cmd in _script_lines(s.pre_up))
    lines.extend(f"PostUp = {cmd}" for cmd in _script_lines(s.post_up))
    lines.extend(f"PostUp = {cmd}" for cmd in post_up_cmds or ())
    lines.extend(f"PostDown = {cmd}" for cmd in post_down_cmds or ())
    lines.extend(f"PostDown = {cmd}" for cmd in _script_lines(s.post_down))
    lines.extend(f"PreDown = {cmd}" for cmd in _script_lines(s.pre_down))

    config = "\n".join(lines) + "\n"

    for peer in state.peers:
        if not peer.enabled:
            continue
        config += "\n" + "\n".join(_peer_section(peer)) + "\n"

    return config


def _peer_section(peer: Peer) -> List[str]:
    lines = [
        "[Peer]",
        f"# {peer.name}",
        f"PublicKey = {peer.public_key}",
    ]
    if peer.preshared_key:
        lines.append(f"PresharedKey = {peer.preshared_key}")
    lines.append(f"AllowedIPs = {effective_allowed_ips(peer)}")
    if peer.endpoint:
        lines.append(f"Endpoint = {peer.endpoint}")
    if peer.persistent_keepalive:
        lines.append(f"PersistentKeepalive = {peer.persistent_keepalive}")
    return lines


def render_client_config(server: ServerConfig, peer: Peer) -> str:
    """
    Build the .conf a remote client imports.

    Raises KeyParseError when the server private key is unusable.
    """
    server_public_key = public_key_from_private(server.private_key)

    dns = peer.dns or server.dns
    client_allowed_ips = peer.client_allowed_ips or ROUTE_ALL
    endpoint = server.endpoint or f"{ENDPOINT_PLACEHOLDER_HOST}:{server.listen_port}"

    lines = [
        "[Interface]",
        f"PrivateKey = {peer.private_key}",
        f"Address = {peer.allowed_ips}",
    ]
    if dns:
        lines.append(f"DNS = {dns}")

    lines += [
        "",
        "[Peer]",
        f"PublicKey = {server_public_key}",
    ]
    if peer.preshared_key:
        lines.append(f"PresharedKey = {peer.preshared_key}")
    lines += [
        f"AllowedIPs = {client_allowed_ips}",
        f"Endpoint = {endpoint}",
    ]
    if peer.persistent_keepalive:
        lines.append(f"PersistentKeepalive = {peer.persistent_keepalive}")

    return "\n".join(lines) + "\n"


def client_config_filename(peer: Peer) -> str:
    """Download filename for a peer config (e.g. my-phone.conf)"""
    name = _FILENAME_UNSAFE.sub("", peer.name.replace(" ", "-"))
    return f"{name or peer.id}.conf"
