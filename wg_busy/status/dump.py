# wg_busy/status/dump.py
"""
Parser for `wg show <iface> dump`

Output is tab separated. The first line describes the interface:

    private-key  public-key  listen-port  fwmark

and every following line one peer:

    public-key  preshared-key  endpoint  allowed-ips  latest-handshake
    transfer-rx  transfer-tx  persistent-keepalive
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

PEER_FIELD_COUNT = 8

_ABSENT = ("", "(none)", "off")


@dataclass(frozen=True)
class InterfaceInfo:
    private_key: str
    public_key: str
    listen_port: Optional[int]
    fw_mark: Optional[str]


@dataclass(frozen=True)
class DumpPeer:
    public_key: str
    preshared_key: Optional[str]
    endpoint: Optional[str]
    allowed_ips: Tuple[str, ...]
    latest_handshake: Optional[datetime]
    # None when the counter could not be parsed
    transfer_rx: Optional[int]
    transfer_tx: Optional[int]
    persistent_keepalive: Optional[int]


@dataclass(frozen=True)
class DumpSample:
    interface: Optional[InterfaceInfo]
    peers: Tuple[DumpPeer, ...]


def _text(value: str) -> Optional[str]:
    value = value.strip()
    return None if value in _ABSENT else value


def _int(value: str) -> Optional[int]:
    value = value.strip()
    if not value.isascii() or not value.isdigit():
        return None
    return int(value)


def _positive(value: str) -> Optional[int]:
    number = _int(value)
    return number if number else None


def _handshake(value: str) -> Optional[datetime]:
    seconds = _positive(value)
    if seconds is None:
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _parse_interface(fields) -> Optional[InterfaceInfo]:
    if len(fields) < 4:
        return None
    return InterfaceInfo(
        private_key=fields[0].strip(),
        public_key=fields[1].strip(),
        listen_port=_positive(fields[2]),
        fw_mark=_text(fields[3]),
    )


def _parse_peer(fields) -> DumpPeer:
    allowed = _text(fields[3])
    return DumpPeer(
        public_key=fields[0].strip(),
        preshared_key=_text(fields[1]),
        endpoint=_text(fields[2]),
        allowed_ips=tuple(a.strip() for a in allowed.split(",")) if allowed else (),
        latest_handshake=_handshake(fields[4]),
        transfer_rx=_int(fields[5]),
        transfer_tx=_int(fields[6]),
        persistent_keepalive=_positive(fields[7]),
    )


def parse_dump(text: str) -> DumpSample:
    """
    Parse one dump.

    Peer lines with fewer than 8 fields are skipped. `(none)`, `off` and a
    zero handshake or keepalive become None.
    """
    lines = [line for line in text.strip().splitlines() if line.strip()]
    if not lines:
        return DumpSample(interface=None, peers=())

    interface = _parse_interface(lines[0].split("\t"))

    peers = []
    for line in lines[1:]:
        fields = line.split("\t")
        if len(fields) < PEER_FIELD_COUNT:
            continue
        peers.append(_parse_peer(fields))

    return DumpSample(interface=interface, peers=tuple(peers))
