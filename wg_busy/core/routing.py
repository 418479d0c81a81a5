# wg_busy/core/routing.py
"""
Policy routing for exit nodes

Each exit node owns a kernel routing table holding a single default
route through its tunnel address. Peers that pick that exit node get an
`ip rule` steering their source address into the table. The commands
are injected into wg0.conf as PostUp / PostDown lines.
"""

from typing import Dict, List, Sequence

from .models import Peer
from .validation import first_ip

ROUTING_TABLE_BASE = 100


def assign_routing_table_id(peers: Sequence[Peer]) -> int:
    """Smallest table id >= ROUTING_TABLE_BASE not held by any peer"""
    used = {p.routing_table_id for p in peers if p.routing_table_id}
    table_id = ROUTING_TABLE_BASE
    while table_id in used:
        table_id += 1
    return table_id


def _active_exit_nodes(peers: Sequence[Peer]) -> Dict[str, Peer]:
    return {
        p.id: p
        for p in peers
        if p.is_exit_node and p.enabled and p.routing_table_id
    }


def generate_post_up_commands(peers: Sequence[Peer], interface: str = "wg0") -> List[str]:
    """
    Activation commands: one default route per exit-node table, then one
    policy rule per peer routed through an exit node. Peer order is kept.
    """
    exit_nodes = _active_exit_nodes(peers)
    if not exit_nodes:
        return []

    cmds: List[str] = []

    added_tables = set()
    for node in exit_nodes.values():
        if node.routing_table_id in added_tables:
            continue
        exit_ip = first_ip(node.allowed_ips)
        if not exit_ip:
            continue
        cmds.append(f"ip route add default via {exit_ip} dev {interface} table {node.routing_table_id}")
        added_tables.add(node.routing_table_id)

    for p in peers:
        if not p.enabled or not p.exit_node_id:
            continue
        node = exit_nodes.get(p.exit_node_id)
        if node is None:
            continue
        peer_ip = first_ip(p.allowed_ips)
        if not peer_ip:
            continue
        cmds.append(f"ip rule add from {peer_ip} table {node.routing_table_id}")

    return cmds


def to_teardown_command(cmd: str) -> str:
    """`ip route add ...` -> `ip route del ...`"""
    parts = cmd.split(" ")
    if len(parts) > 2 and parts[2] == "add":
        parts[2] = "del"
    return " ".join(parts)


def generate_post_down_commands(peers: Sequence[Peer], interface: str = "wg0") -> List[str]:
    """Teardown commands: the activation list reversed, add -> del"""
    return [to_teardown_command(cmd) for cmd in reversed(generate_post_up_commands(peers, interface))]
