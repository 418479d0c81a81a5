"""
wg-busy

Declarative manager for a single WireGuard interface:
- YAML state file is the source of truth
- wg0.conf is rendered from it on every change
- Exit-node peers get their own policy routing table
- Live traffic stats are sampled from `wg show dump`
"""

__version__ = "1.0.0"
