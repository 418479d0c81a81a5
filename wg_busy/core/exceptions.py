# wg_busy/core/exceptions.py
"""
Error types shared across wg-busy

Validation errors live in core.validation since they carry field data.
"""


class WgBusyError(Exception):
    """Base class for all wg-busy errors"""


class StateLoadError(WgBusyError):
    """State file exists but cannot be parsed"""


class PersistenceError(WgBusyError):
    """State or runtime config could not be written to disk"""


class AddressPoolExhausted(WgBusyError):
    """No free host address left in the server subnet"""


class PeerNotFound(WgBusyError):
    """No peer with the given id"""

    def __init__(self, peer_id: str):
        super().__init__(f"peer not found: {peer_id}")
        self.peer_id = peer_id


class KeyParseError(WgBusyError):
    """A base64 WireGuard key could not be decoded"""


class WireGuardCommandError(WgBusyError):
    """An external wg / wg-quick invocation failed"""

    def __init__(self, command: str, returncode: int, output: str = ""):
        super().__init__(f"{command} failed with exit code {returncode}: {output.strip()}")
        self.command = command
        self.returncode = returncode
        self.output = output
