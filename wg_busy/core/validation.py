# wg_busy/core/validation.py
"""
Entity and cross-entity validation

Every check collects all violations instead of stopping at the first
one, so a form can show every problem in a single round trip.
Nothing here mutates its input except cascade_clear_exit_node().
"""

import base64
import binascii
import ipaddress
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .exceptions import KeyParseError, WgBusyError
from .keys import public_key_from_private
from .models import Peer, ServerConfig

MAX_NAME_LENGTH = 64
MAX_SCRIPT_LENGTH = 4096
MIN_MTU = 1280
MAX_PORT = 65535

_NAME_RE = re.compile(r"^[a-zA-Z0-9 _.\-]+$")
_HOSTNAME_RE = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9\-]*[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9\-]*[a-zA-Z0-9])?)*$"
)


class ErrorKind(str, Enum):
    REQUIRED = "required"
    FORMAT = "format"
    RANGE = "range"
    LENGTH = "length"
    CONFLICT = "conflict"
    REFERENCE = "reference"
    DUPLICATE = "duplicate"
    KEY_MISMATCH = "key_mismatch"


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str
    kind: ErrorKind = ErrorKind.FORMAT

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class ValidationErrors(WgBusyError):
    """Raised by a mutation when one or more fields are invalid"""

    def __init__(self, errors: Iterable[FieldError]):
        self.errors: List[FieldError] = list(errors)
        super().__init__("; ".join(str(e) for e in self.errors))

    def has_field(self, field: str) -> bool:
        return any(e.field == field for e in self.errors)

    def for_field(self, field: str) -> List[FieldError]:
        return [e for e in self.errors if e.field == field]


def raise_if_any(errors: Sequence[FieldError]) -> None:
    if errors:
        raise ValidationErrors(errors)


# =============================================================================
# Field format helpers
# =============================================================================

def is_valid_base64_key(value: str) -> bool:
    value = value.strip()
    if len(value) != 44:
        return False
    try:
        base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return False
    return True


def _split_list(value: str) -> List[str]:
    return [part.strip() for part in value.split(",")]


def parse_cidr(value: str) -> Optional[Union[ipaddress.IPv4Interface, ipaddress.IPv6Interface]]:
    """Parse one prefix in host form (10.0.0.1/24), returning an interface or None"""
    value = value.strip()
    if "/" not in value:
        return None
    try:
        return ipaddress.ip_interface(value)
    except ValueError:
        return None


def is_valid_cidr_list(value: str) -> bool:
    parts = _split_list(value)
    return all(part and parse_cidr(part) is not None for part in parts)


def is_valid_dns_list(value: str) -> bool:
    for part in _split_list(value):
        if not part:
            return False
        try:
            ipaddress.ip_address(part)
            continue
        except ValueError:
            pass
        if not _HOSTNAME_RE.fullmatch(part):
            return False
    return True


def split_host_port(value: str) -> Optional[Tuple[str, str]]:
    """Split host:port or [v6]:port, returning None when malformed"""
    if value.startswith("["):
        end = value.find("]:")
        if end == -1:
            return None
        return value[1:end], value[end + 2:]
    if value.count(":") != 1:
        return None
    host, port = value.split(":", 1)
    return host, port


def is_valid_endpoint(value: str) -> bool:
    parts = split_host_port(value)
    if parts is None:
        return False
    host, port = parts
    if not host or not (port.isascii() and port.isdigit()):
        return False
    return 1 <= int(port) <= MAX_PORT


def is_valid_table(value: str) -> bool:
    if value in ("off", "auto"):
        return True
    return value.isascii() and value.isdigit()


def is_valid_fw_mark(value: str) -> bool:
    if value == "off":
        return True
    try:
        if value[:2] in ("0x", "0X"):
            mark = int(value[2:], 16)
        elif value.isascii() and value.isdigit():
            mark = int(value)
        else:
            return False
    except ValueError:
        return False
    return 0 <= mark <= 0xFFFFFFFF


def first_ip(cidr_list: str) -> str:
    """IP (without mask) of the first prefix in a CIDR list, or "" if invalid"""
    iface = parse_cidr(cidr_list.split(",")[0])
    return str(iface.ip) if iface is not None else ""


# =============================================================================
# Entity validation
# =============================================================================

def _check_key(errors: List[FieldError], field: str, value: str, required: bool) -> bool:
    if not value:
        if required:
            errors.append(FieldError(field, "required", ErrorKind.REQUIRED))
        return False
    if not is_valid_base64_key(value):
        errors.append(FieldError(field, "must be a 44-character base64 key"))
        return False
    return True


def validate_server(server: ServerConfig) -> List[FieldError]:
    """Validate all fields of the server entity"""
    errors: List[FieldError] = []

    _check_key(errors, "privateKey", server.private_key, required=True)

    if not server.listen_port:
        errors.append(FieldError("listenPort", "required and must be > 0", ErrorKind.REQUIRED))
    elif not 1 <= server.listen_port <= MAX_PORT:
        errors.append(FieldError("listenPort", "must be 1-65535", ErrorKind.RANGE))

    if not server.address:
        errors.append(FieldError("address", "required", ErrorKind.REQUIRED))
    elif not is_valid_cidr_list(server.address):
        errors.append(FieldError("address", "must be valid CIDR (e.g. 10.0.0.1/24)"))

    if server.endpoint and not is_valid_endpoint(server.endpoint):
        errors.append(FieldError("endpoint", "must be host:port"))

    if server.dns and not is_valid_dns_list(server.dns):
        errors.append(FieldError("dns", "must be comma-separated IPs or hostnames"))

    if server.mtu and not MIN_MTU <= server.mtu <= MAX_PORT:
        errors.append(FieldError("mtu", "must be 1280-65535", ErrorKind.RANGE))

    if server.table and not is_valid_table(server.table):
        errors.append(FieldError("table", "must be 'off', 'auto', or a numeric value"))

    if server.fw_mark and not is_valid_fw_mark(server.fw_mark):
        errors.append(FieldError("fwMark", "must be a number, hex (0x...), or 'off'"))

    for field, value in (
        ("preUp", server.pre_up),
        ("postUp", server.post_up),
        ("preDown", server.pre_down),
        ("postDown", server.post_down),
    ):
        if len(value) > MAX_SCRIPT_LENGTH:
            errors.append(FieldError(field, "maximum 4096 characters", ErrorKind.LENGTH))

    return errors


def validate_peer(peer: Peer) -> List[FieldError]:
    """Validate all fields of a single peer"""
    errors: List[FieldError] = []

    name = peer.name.strip()
    if not name:
        errors.append(FieldError("name", "required", ErrorKind.REQUIRED))
    elif len(peer.name) > MAX_NAME_LENGTH:
        errors.append(FieldError("name", "maximum 64 characters", ErrorKind.LENGTH))
    elif not _NAME_RE.fullmatch(peer.name):
        errors.append(FieldError("name", "only letters, numbers, spaces, dashes, dots, underscores"))

    private_ok = _check_key(errors, "privateKey", peer.private_key, required=True)
    public_ok = _check_key(errors, "publicKey", peer.public_key, required=True)
    if private_ok and public_ok:
        try:
            derived = public_key_from_private(peer.private_key)
        except KeyParseError:
            derived = None
        if derived != peer.public_key.strip():
            errors.append(FieldError("publicKey", "does not match the private key", ErrorKind.KEY_MISMATCH))

    _check_key(errors, "presharedKey", peer.preshared_key, required=False)

    if not peer.allowed_ips:
        errors.append(FieldError("allowedIPs", "required", ErrorKind.REQUIRED))
    elif not is_valid_cidr_list(peer.allowed_ips):
        errors.append(FieldError("allowedIPs", "must be comma-separated CIDRs"))

    if peer.endpoint and not is_valid_endpoint(peer.endpoint):
        errors.append(FieldError("endpoint", "must be host:port"))

    if not 0 <= peer.persistent_keepalive <= MAX_PORT:
        errors.append(FieldError("persistentKeepalive", "must be 0-65535", ErrorKind.RANGE))

    if peer.client_allowed_ips and not is_valid_cidr_list(peer.client_allowed_ips):
        errors.append(FieldError("clientAllowedIPs", "must be comma-separated CIDRs"))

    if peer.dns and not is_valid_dns_list(peer.dns):
        errors.append(FieldError("dns", "must be comma-separated IPs or hostnames"))

    if peer.is_exit_node and peer.exit_node_id:
        errors.append(FieldError(
            "exitNodeID",
            "a peer cannot be both an exit node and use an exit node",
            ErrorKind.CONFLICT,
        ))

    if peer.is_exit_node and peer.routing_table_id is None:
        errors.append(FieldError("routingTableID", "required for an exit node", ErrorKind.REQUIRED))
    elif not peer.is_exit_node and peer.routing_table_id is not None:
        errors.append(FieldError("routingTableID", "only exit nodes hold a routing table", ErrorKind.CONFLICT))

    return errors


def validate_exit_node_references(peers: Sequence[Peer]) -> List[FieldError]:
    """Every exitNodeID must point at an enabled exit node"""
    exit_nodes = {p.id for p in peers if p.is_exit_node and p.enabled}

    errors: List[FieldError] = []
    for p in peers:
        if p.exit_node_id and p.exit_node_id not in exit_nodes:
            errors.append(FieldError(
                f"peers[{p.id}].exitNodeID",
                f"references non-existent or disabled exit node {p.exit_node_id!r}",
                ErrorKind.REFERENCE,
            ))
    return errors


def validate_peer_addresses(
    peers: Sequence[Peer],
    server_address: str,
    allow_outside: Iterable[str] = (),
) -> List[FieldError]:
    """
    Enabled peers must not share an address with each other or the server,
    and their first address must sit inside the server subnet of the same
    family. Peers flagged allow_outside_subnet, and peer ids in
    allow_outside, skip the subnet check.

    A shared address is reported on every peer involved, under the field
    peers[<id>].allowedIPs.
    """
    allow_outside = set(allow_outside) | {p.id for p in peers if p.allow_outside_subnet}
    errors: List[FieldError] = []

    server_networks = {}
    # (family, ip) -> [(peer id or None for the server, label)]
    claims: Dict[Tuple[int, object], List[Tuple[Optional[str], str]]] = {}
    for part in _split_list(server_address):
        iface = parse_cidr(part)
        if iface is None:
            continue
        server_networks.setdefault(iface.version, iface.network)
        claims.setdefault((iface.version, iface.ip), []).append((None, "the server"))

    for p in peers:
        if not p.enabled or not p.allowed_ips:
            continue

        for index, part in enumerate(_split_list(p.allowed_ips)):
            iface = parse_cidr(part)
            if iface is None:
                continue
            claims.setdefault((iface.version, iface.ip), []).append((p.id, f"peer {p.name!r}"))

            if index == 0 and p.id not in allow_outside:
                network = server_networks.get(iface.version)
                if network is not None and iface.ip not in network:
                    errors.append(FieldError(
                        f"peers[{p.id}].allowedIPs",
                        f"address {iface.ip} is outside the server subnet {network}",
                        ErrorKind.RANGE,
                    ))

    for (_, ip), owners in claims.items():
        if len(owners) < 2:
            continue
        reported = set()
        for owner_id, _ in owners:
            if owner_id is None or owner_id in reported:
                continue
            reported.add(owner_id)
            others = [label for other_id, label in owners if other_id != owner_id]
            if others:
                message = f"address {ip} is also used by {', '.join(others)}"
            else:
                message = f"address {ip} is listed more than once"
            errors.append(FieldError(f"peers[{owner_id}].allowedIPs", message, ErrorKind.DUPLICATE))

    return errors


# =============================================================================
# Peer-set helpers
# =============================================================================

def find_peer(peers: Sequence[Peer], peer_id: str) -> Optional[Peer]:
    for p in peers:
        if p.id == peer_id:
            return p
    return None


def exit_node_peers(peers: Sequence[Peer]) -> List[Peer]:
    """Enabled peers flagged as exit nodes"""
    return [p for p in peers if p.is_exit_node and p.enabled]


def cascade_clear_exit_node(peers: Sequence[Peer], exit_node_id: str) -> int:
    """Drop every reference to exit_node_id. Returns how many peers changed."""
    cleared = 0
    for p in peers:
        if p.exit_node_id == exit_node_id:
            p.exit_node_id = ""
            p.touch()
            cleared += 1
    return cleared
