"""
Status Module

Live interface monitoring:
- `wg show dump` parsing
- Transfer rates and history
- Human readable formatting
"""

from .collector import HistoryPoint, InterfaceStats, PeerStats, StatsCollector
from .dump import DumpPeer, DumpSample, InterfaceInfo, parse_dump

__all__ = [
    "StatsCollector",
    "InterfaceStats",
    "PeerStats",
    "HistoryPoint",
    "parse_dump",
    "DumpSample",
    "DumpPeer",
    "InterfaceInfo",
]
