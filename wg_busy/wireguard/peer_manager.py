# wg_busy/wireguard/peer_manager.py
"""
Peer Manager

High-level peer and server management on top of the ConfigStore:
- Create / update / delete / toggle peers
- Exit-node transitions (routing table assignment, cascade clear)
- Server settings and first-run key generation

Every method is one store.write(), so each change is validated, persisted,
rendered and reloaded as a unit.
"""

import logging
from typing import Any, List, Optional, Sequence

from pydantic import BaseModel, ValidationError

from ..core.exceptions import PeerNotFound
from ..core.ipam import next_available_address
from ..core.keys import generate_keypair, generate_preshared_key, generate_private_key
from ..core.models import AppState, Peer, ServerConfig, utcnow
from ..core.routing import assign_routing_table_id
from ..core.store import ConfigStore
from ..core.validation import (
    ErrorKind,
    FieldError,
    ValidationErrors,
    cascade_clear_exit_node,
    exit_node_peers,
    find_peer,
    raise_if_any,
    validate_exit_node_references,
    validate_peer,
    validate_peer_addresses,
    validate_server,
)

logger = logging.getLogger('wg-busy.peer_manager')

PEER_FIELDS = frozenset({
    "name",
    "allowed_ips",
    "endpoint",
    "persistent_keepalive",
    "dns",
    "client_allowed_ips",
    "is_exit_node",
    "exit_node_id",
    "enabled",
    "allow_outside_subnet",
})

SERVER_FIELDS = frozenset({
    "listen_port",
    "address",
    "endpoint",
    "dns",
    "mtu",
    "table",
    "fw_mark",
    "pre_up",
    "post_up",
    "pre_down",
    "post_down",
    "save_config",
})

# Hook scripts keep their inner whitespace
_UNTRIMMED_FIELDS = frozenset({"pre_up", "post_up", "pre_down", "post_down"})


def _clean(field: str, value: Any) -> Any:
    if isinstance(value, str) and field not in _UNTRIMMED_FIELDS:
        return value.strip()
    return value


def _type_errors(model_cls: type, exc: ValidationError) -> List[FieldError]:
    """pydantic errors keyed by the on-disk field name"""
    errors = []
    for err in exc.errors():
        key = str(err["loc"][0]) if err["loc"] else ""
        info = model_cls.model_fields.get(key)
        field = info.alias if info is not None and info.alias else key
        errors.append(FieldError(field, err["msg"], ErrorKind.FORMAT))
    return errors


def _apply_changes(model: BaseModel, changes: dict) -> None:
    """Assign changes with pydantic validation; wrongly typed values become field errors"""
    errors: List[FieldError] = []
    for field, value in changes.items():
        try:
            setattr(model, field, _clean(field, value))
        except ValidationError as e:
            errors += _type_errors(type(model), e)
    raise_if_any(errors)


def _scoped_errors(errors: Sequence[FieldError], peer_id: str) -> List[FieldError]:
    """Keep cross-peer errors about peer_id, keyed by the bare field name"""
    prefix = f"peers[{peer_id}]."
    return [
        FieldError(e.field[len(prefix):], e.message, e.kind)
        for e in errors
        if e.field.startswith(prefix)
    ]


def _server_subnet(server: ServerConfig) -> str:
    return server.address.split(",")[0].strip()


class PeerManager:
    """
    Single entry point for every state mutation
    """

    def __init__(self, store: ConfigStore):
        """
        Initialize peer manager

        Args:
            store: ConfigStore owning the state
        """
        self.store = store

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def list_peers(self) -> List[Peer]:
        return self.store.snapshot().peers

    def get_peer(self, peer_id: str) -> Peer:
        def _get(state: AppState) -> Peer:
            peer = find_peer(state.peers, peer_id)
            if peer is None:
                raise PeerNotFound(peer_id)
            return peer.model_copy(deep=True)

        return self.store.read(_get)

    def exit_nodes(self) -> List[Peer]:
        """Peers that can currently be picked as an exit node"""
        return self.store.read(lambda state: [p.model_copy(deep=True) for p in exit_node_peers(state.peers)])

    def server(self) -> ServerConfig:
        return self.store.read(lambda state: state.server.model_copy(deep=True))

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _check_peer(self, state: AppState, peer: Peer) -> None:
        errors = list(validate_peer(peer))

        cross = validate_exit_node_references(state.peers)
        cross += validate_peer_addresses(state.peers, state.server.address)
        errors += _scoped_errors(cross, peer.id)

        raise_if_any(errors)

    def _assign_address(self, state: AppState, peer: Peer) -> None:
        if peer.allowed_ips:
            return
        used = [p.allowed_ips for p in state.peers if p.id != peer.id]
        peer.allowed_ips = next_available_address(_server_subnet(state.server), used)
        logger.debug(f"Auto-assigned {peer.allowed_ips} to {peer.name!r}")

    # -------------------------------------------------------------------------
    # Peer mutations
    # -------------------------------------------------------------------------

    def create_peer(
        self,
        name: str,
        allowed_ips: str = "",
        endpoint: str = "",
        persistent_keepalive: int = 0,
        dns: str = "",
        client_allowed_ips: str = "",
        is_exit_node: bool = False,
        exit_node_id: str = "",
        enabled: bool = True,
        with_preshared_key: bool = False,
        allow_outside_subnet: bool = False,
    ) -> Peer:
        """
        Create a peer with fresh keys.

        An empty allowed_ips gets the next free address in the server
        subnet. Exit nodes get a routing table and drop any exit_node_id.
        allow_outside_subnet is stored on the peer and exempts its address
        from the server subnet check on every later change.

        Returns:
            The stored peer

        Raises:
            ValidationErrors: one or more fields are invalid
            AddressPoolExhausted: no free address to auto-assign
        """
        private_key, public_key = generate_keypair()
        now = utcnow()
        try:
            peer = Peer(
                name=name.strip(),
                private_key=private_key,
                public_key=public_key,
                preshared_key=generate_preshared_key() if with_preshared_key else "",
                allowed_ips=allowed_ips.strip(),
                endpoint=endpoint.strip(),
                persistent_keepalive=persistent_keepalive,
                dns=dns.strip(),
                client_allowed_ips=client_allowed_ips.strip(),
                is_exit_node=is_exit_node,
                exit_node_id="" if is_exit_node else exit_node_id.strip(),
                enabled=enabled,
                allow_outside_subnet=allow_outside_subnet,
                created_at=now,
                updated_at=now,
            )
        except ValidationError as e:
            raise ValidationErrors(_type_errors(Peer, e)) from e

        def _create(state: AppState) -> Peer:
            self._assign_address(state, peer)
            if peer.is_exit_node:
                peer.routing_table_id = assign_routing_table_id(state.peers)

            state.peers.append(peer)
            self._check_peer(state, peer)
            return peer.model_copy(deep=True)

        created = self.store.write(_create)
        logger.info(f"Created peer {created.name!r} ({created.allowed_ips})")
        return created

    def update_peer(self, peer_id: str, **changes: Any) -> Peer:
        """
        Update editable fields of a peer.

        Clearing is_exit_node releases the routing table and clears every
        reference to the peer. Disabling an exit node clears references too.
        Re-enabling a peer runs the same checks as toggle_peer().
        """
        unknown = set(changes) - PEER_FIELDS
        if unknown:
            raise ValueError(f"unknown peer field(s): {', '.join(sorted(unknown))}")

        def _update(state: AppState) -> Peer:
            peer = find_peer(state.peers, peer_id)
            if peer is None:
                raise PeerNotFound(peer_id)

            was_active_exit = peer.is_exit_node and peer.enabled

            _apply_changes(peer, changes)

            if peer.is_exit_node:
                peer.exit_node_id = ""
                if peer.routing_table_id is None:
                    peer.routing_table_id = assign_routing_table_id(state.peers)
            else:
                peer.routing_table_id = None

            if was_active_exit and not (peer.is_exit_node and peer.enabled):
                cleared = cascade_clear_exit_node(state.peers, peer.id)
                if cleared:
                    logger.info(f"Cleared exit node {peer.name!r} from {cleared} peer(s)")

            self._assign_address(state, peer)
            peer.touch()
            self._check_peer(state, peer)
            return peer.model_copy(deep=True)

        return self.store.write(_update)

    def delete_peer(self, peer_id: str) -> None:
        def _delete(state: AppState) -> str:
            peer = find_peer(state.peers, peer_id)
            if peer is None:
                raise PeerNotFound(peer_id)

            if peer.is_exit_node:
                cascade_clear_exit_node(state.peers, peer.id)
            state.peers.remove(peer)
            return peer.name

        name = self.store.write(_delete)
        logger.info(f"Deleted peer {name!r}")

    def toggle_peer(self, peer_id: str) -> Peer:
        """Flip enabled. Disabling an exit node clears references to it."""
        def _toggle(state: AppState) -> Peer:
            peer = find_peer(state.peers, peer_id)
            if peer is None:
                raise PeerNotFound(peer_id)

            peer.enabled = not peer.enabled
            peer.touch()

            if not peer.enabled and peer.is_exit_node:
                cascade_clear_exit_node(state.peers, peer.id)

            if peer.enabled:
                self._check_peer(state, peer)
            return peer.model_copy(deep=True)

        return self.store.write(_toggle)

    def regenerate_keys(self, peer_id: str) -> Peer:
        def _regenerate(state: AppState) -> Peer:
            peer = find_peer(state.peers, peer_id)
            if peer is None:
                raise PeerNotFound(peer_id)

            peer.private_key, peer.public_key = generate_keypair()
            peer.touch()
            return peer.model_copy(deep=True)

        return self.store.write(_regenerate)

    # -------------------------------------------------------------------------
    # Server
    # -------------------------------------------------------------------------

    def update_server(self, **changes: Any) -> ServerConfig:
        """Update server settings; peer addresses are re-checked against the new subnet"""
        unknown = set(changes) - SERVER_FIELDS
        if unknown:
            raise ValueError(f"unknown server field(s): {', '.join(sorted(unknown))}")

        def _update(state: AppState) -> ServerConfig:
            _apply_changes(state.server, changes)

            errors = validate_server(state.server)
            if "address" in changes and not errors:
                errors += validate_peer_addresses(state.peers, state.server.address)
            raise_if_any(errors)
            return state.server.model_copy(deep=True)

        return self.store.write(_update)

    def ensure_server_keys(self) -> bool:
        """
        Generate the server private key on first run.

        Returns:
            True if a key was generated
        """
        if self.store.read(lambda state: bool(state.server.private_key)):
            return False

        def _generate(state: AppState) -> bool:
            if state.server.private_key:
                return False
            state.server.private_key = generate_private_key()
            return True

        generated = self.store.write(_generate)
        if generated:
            logger.info("Generated server key pair")
        return generated

    def find_by_public_key(self, public_key: str) -> Optional[Peer]:
        """Map a key seen in `wg show` output back to a stored peer"""
        def _find(state: AppState) -> Optional[Peer]:
            for p in state.peers:
                if p.public_key == public_key:
                    return p.model_copy(deep=True)
            return None

        return self.store.read(_find)
