# wg_busy/core/ipam.py
import ipaddress
from typing import Iterable

from .exceptions import AddressPoolExhausted


def _reserved_addresses(subnet: str, used: Iterable[str]) -> set:
    iface = ipaddress.ip_interface(subnet)
    network = iface.network

    # Network, broadcast (last address for IPv6) and the server's own address
    reserved = {network.network_address, network.broadcast_address, iface.ip}

    for entry in used:
        for part in entry.split(","):
            part = part.strip()
            if not part:
                continue
            try:
                reserved.add(ipaddress.ip_interface(part).ip)
            except ValueError:
                continue

    return reserved


def next_available_address(subnet: str, used: Iterable[str]) -> str:
    """
    Find the lowest free host address in the server subnet.

    Args:
        subnet: Server interface address in CIDR form (e.g. "10.0.0.1/24")
        used: Addresses already handed out, CIDR or bare IP

    Returns:
        Single-host prefix, e.g. "10.0.0.2/32"
    """
    try:
        network = ipaddress.ip_interface(subnet).network
    except ValueError as e:
        raise ValueError(f"invalid server address: {e}") from e

    reserved = _reserved_addresses(subnet, used)
    address_type = type(network.network_address)

    first = int(network.network_address) + 1
    last = int(network.broadcast_address)
    for value in range(first, last + 1):
        candidate = address_type(value)
        if candidate not in reserved:
            return f"{candidate}/{network.max_prefixlen}"

    raise AddressPoolExhausted(f"no available IPs in subnet {network}")
