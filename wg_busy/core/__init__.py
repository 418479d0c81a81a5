"""
Core Module

State model and the pure logic around it:
- Entities and validation
- Address and routing-table allocation
- Policy routing commands
- Config store (persist / render / reload)
"""

from .exceptions import (
    AddressPoolExhausted,
    KeyParseError,
    PeerNotFound,
    PersistenceError,
    StateLoadError,
    WgBusyError,
    WireGuardCommandError,
)
from .models import AppState, Peer, ServerConfig
from .validation import ErrorKind, FieldError, ValidationErrors

__all__ = [
    "AppState",
    "Peer",
    "ServerConfig",
    "ErrorKind",
    "FieldError",
    "ValidationErrors",
    "WgBusyError",
    "StateLoadError",
    "PersistenceError",
    "AddressPoolExhausted",
    "PeerNotFound",
    "KeyParseError",
    "WireGuardCommandError",
]
