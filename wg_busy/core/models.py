# wg_busy/core/models.py
"""
Entity model persisted to the YAML state file

Field aliases are the camelCase keys used on disk, so state files written
by earlier releases stay readable.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_LISTEN_PORT = 51820
DEFAULT_ADDRESS = "10.0.0.1/24"
DEFAULT_POST_UP = "iptables -A POSTROUTING -t nat -o eth0 -j MASQUERADE"
DEFAULT_POST_DOWN = "iptables -D POSTROUTING -t nat -o eth0 -j MASQUERADE"

# Keys always written even when empty
_SERVER_REQUIRED_KEYS = {"privateKey", "listenPort", "address"}
_PEER_REQUIRED_KEYS = {
    "id", "name", "privateKey", "publicKey", "allowedIPs",
    "enabled", "createdAt", "updatedAt",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _omit_empty(data: Dict[str, Any], required: set) -> Dict[str, Any]:
    return {
        key: value
        for key, value in data.items()
        if key in required or value not in (None, "", 0, False)
    }


class ServerConfig(BaseModel):
    """The [Interface] side of wg0.conf"""
    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    private_key: str = Field("", alias="privateKey")
    listen_port: int = Field(DEFAULT_LISTEN_PORT, alias="listenPort")
    address: str = Field(DEFAULT_ADDRESS, alias="address")
    endpoint: str = Field("", alias="endpoint", description="Public host:port for client configs")
    dns: str = Field("", alias="dns")
    mtu: int = Field(0, alias="mtu")
    table: str = Field("", alias="table")
    fw_mark: str = Field("", alias="fwMark")
    pre_up: str = Field("", alias="preUp")
    post_up: str = Field("", alias="postUp")
    pre_down: str = Field("", alias="preDown")
    post_down: str = Field("", alias="postDown")
    save_config: bool = Field(False, alias="saveConfig")

    @field_validator("table", "fw_mark", mode="before")
    @classmethod
    def _coerce_str(cls, value):
        # YAML turns an unquoted `table: 200` into an int
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return "" if value is None else value

    def to_document(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True, mode="json")
        return _omit_empty(data, _SERVER_REQUIRED_KEYS)


class Peer(BaseModel):
    """A WireGuard peer (client, site or exit node)"""
    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), alias="id")
    name: str = Field("", alias="name")
    private_key: str = Field("", alias="privateKey")
    public_key: str = Field("", alias="publicKey")
    preshared_key: str = Field("", alias="presharedKey")
    allowed_ips: str = Field("", alias="allowedIPs", description="Tunnel address(es) of the peer")
    endpoint: str = Field("", alias="endpoint")
    persistent_keepalive: int = Field(0, alias="persistentKeepalive")
    dns: str = Field("", alias="dns")
    client_allowed_ips: str = Field("", alias="clientAllowedIPs")
    is_exit_node: bool = Field(False, alias="isExitNode")
    exit_node_id: str = Field("", alias="exitNodeID")
    routing_table_id: Optional[int] = Field(None, alias="routingTableID")
    allow_outside_subnet: bool = Field(
        False, alias="allowOutsideSubnet", description="Tunnel address may sit outside the server subnet"
    )
    enabled: bool = Field(True, alias="enabled")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")
    updated_at: datetime = Field(default_factory=utcnow, alias="updatedAt")

    @field_validator("routing_table_id", mode="before")
    @classmethod
    def _zero_means_unset(cls, value):
        if value in (0, "", None):
            return None
        return value

    @field_validator("preshared_key", "endpoint", "dns", "client_allowed_ips", "exit_node_id", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return "" if value is None else value

    def touch(self) -> None:
        self.updated_at = utcnow()

    def to_document(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True, mode="json")
        return _omit_empty(data, _PEER_REQUIRED_KEYS)


class AppState(BaseModel):
    """Aggregate root: one server plus an ordered list of peers"""
    model_config = ConfigDict(populate_by_name=True)

    server: ServerConfig = Field(default_factory=ServerConfig)
    peers: List[Peer] = Field(default_factory=list)

    @field_validator("peers", mode="before")
    @classmethod
    def _null_peers(cls, value):
        return [] if value is None else value

    @classmethod
    def with_defaults(cls) -> "AppState":
        """State used on first run, before any file exists"""
        return cls(
            server=ServerConfig(
                listen_port=DEFAULT_LISTEN_PORT,
                address=DEFAULT_ADDRESS,
                post_up=DEFAULT_POST_UP,
                post_down=DEFAULT_POST_DOWN,
            ),
            peers=[],
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "server": self.server.to_document(),
            "peers": [p.to_document() for p in self.peers],
        }
