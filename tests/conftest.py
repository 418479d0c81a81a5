# tests/conftest.py
"""
Pytest fixtures for wg-busy tests
Shared state builders and a store that never touches WireGuard
"""

import pytest
from unittest.mock import Mock

from wg_busy.core.keys import generate_keypair, generate_private_key
from wg_busy.core.models import AppState, Peer, ServerConfig
from wg_busy.core.store import ConfigStore
from wg_busy.wireguard.peer_manager import PeerManager


# ============================================
# Entities
# ============================================

@pytest.fixture
def server():
    """Server with a real key and the default subnet"""
    return ServerConfig(
        private_key=generate_private_key(),
        listen_port=51820,
        address="10.0.0.1/24",
    )


@pytest.fixture
def make_peer():
    """Factory for valid peers; keyword arguments override fields"""
    def _make(name="peer", allowed_ips="10.0.0.2/32", **fields):
        private_key, public_key = generate_keypair()
        data = dict(
            name=name,
            private_key=private_key,
            public_key=public_key,
            allowed_ips=allowed_ips,
        )
        data.update(fields)
        return Peer(**data)

    return _make


@pytest.fixture
def state(server):
    return AppState(server=server, peers=[])


# ============================================
# Store / manager
# ============================================

@pytest.fixture
def mock_wireguard():
    """WireGuardManager stand-in that records reloads"""
    wg = Mock()
    wg.reload_config = Mock()
    return wg


@pytest.fixture
def store(tmp_path, state, mock_wireguard):
    return ConfigStore(
        tmp_path / "data" / "config.yaml",
        tmp_path / "wireguard" / "wg0.conf",
        state,
        wireguard=mock_wireguard,
    )


@pytest.fixture
def peer_manager(store):
    return PeerManager(store)
