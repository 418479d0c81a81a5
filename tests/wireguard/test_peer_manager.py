# tests/wireguard/test_peer_manager.py
"""
Unit Tests for PeerManager
Exit node transitions, cascades and scoped validation over a real store
"""

import pytest

from wg_busy.core.exceptions import PeerNotFound
from wg_busy.core.keys import public_key_from_private
from wg_busy.core.models import AppState
from wg_busy.core.store import ConfigStore
from wg_busy.core.validation import (
    ErrorKind,
    ValidationErrors,
    validate_exit_node_references,
    validate_peer,
)
from wg_busy.wireguard.config_builder import ROUTE_ALL
from wg_busy.wireguard.peer_manager import PeerManager


def assert_invariants(manager):
    state = manager.store.snapshot()
    for p in state.peers:
        assert validate_peer(p) == [], p.name
        if not p.is_exit_node:
            assert p.routing_table_id is None
    assert validate_exit_node_references(state.peers) == []


class TestPeerManagerBase:
    """Shared exit node setup"""

    @pytest.fixture
    def exit_node(self, peer_manager):
        return peer_manager.create_peer("exit", is_exit_node=True)

    @pytest.fixture
    def client(self, peer_manager, exit_node):
        return peer_manager.create_peer("client", exit_node_id=exit_node.id)


class TestCreatePeer(TestPeerManagerBase):
    """Tests for create_peer"""

    def test_auto_assigns_addresses(self, peer_manager):
        """Test sequential allocation in the server subnet"""
        a = peer_manager.create_peer("a")
        b = peer_manager.create_peer("b")

        assert a.allowed_ips == "10.0.0.2/32"
        assert b.allowed_ips == "10.0.0.3/32"

    def test_generates_keys(self, peer_manager):
        """Test key pair is consistent and no psk by default"""
        peer = peer_manager.create_peer("a")

        assert public_key_from_private(peer.private_key) == peer.public_key
        assert peer.preshared_key == ""
        assert peer_manager.create_peer("b", with_preshared_key=True).preshared_key

    def test_persisted(self, peer_manager):
        """Test the peer reaches both files"""
        peer = peer_manager.create_peer("laptop", persistent_keepalive=25)

        assert "laptop" in peer_manager.store.config_path.read_text()
        assert f"PublicKey = {peer.public_key}" in peer_manager.store.wg_config_path.read_text()
        assert peer_manager.get_peer(peer.id).persistent_keepalive == 25

    def test_exit_node_gets_table(self, peer_manager):
        """Test table assignment and exit_node_id dropped"""
        first = peer_manager.create_peer("e1", is_exit_node=True, exit_node_id="ignored")
        second = peer_manager.create_peer("e2", is_exit_node=True)

        assert first.routing_table_id == 100
        assert first.exit_node_id == ""
        assert second.routing_table_id == 101

    def test_invalid_fields(self, peer_manager):
        """Test every bad field is reported and nothing is stored"""
        with pytest.raises(ValidationErrors) as exc:
            peer_manager.create_peer("bad/name", endpoint="nohost", dns="bad_host!")

        assert {e.field for e in exc.value.errors} == {"name", "endpoint", "dns"}
        assert peer_manager.list_peers() == []

    def test_duplicate_address(self, peer_manager):
        """Test explicit address clash is scoped to the new peer"""
        peer_manager.create_peer("a", allowed_ips="10.0.0.5/32")

        with pytest.raises(ValidationErrors) as exc:
            peer_manager.create_peer("b", allowed_ips="10.0.0.5/32")

        assert exc.value.for_field("allowedIPs")[0].kind == ErrorKind.DUPLICATE
        assert len(peer_manager.list_peers()) == 1

    def test_outside_subnet(self, peer_manager):
        """Test subnet check and its override"""
        with pytest.raises(ValidationErrors) as exc:
            peer_manager.create_peer("site", allowed_ips="192.168.5.1/32")
        assert exc.value.for_field("allowedIPs")[0].kind == ErrorKind.RANGE

        peer = peer_manager.create_peer("site", allowed_ips="192.168.5.1/32", allow_outside_subnet=True)
        assert peer.allowed_ips == "192.168.5.1/32"

    def test_unknown_exit_node(self, peer_manager):
        """Test reference to a missing exit node"""
        with pytest.raises(ValidationErrors) as exc:
            peer_manager.create_peer("a", exit_node_id="missing")

        assert exc.value.has_field("exitNodeID")

    def test_client_routed_through_exit_node(self, peer_manager, exit_node, client):
        """Test routing commands appear in wg0.conf"""
        text = peer_manager.store.wg_config_path.read_text()

        assert "PostUp = ip route add default via 10.0.0.2 dev wg0 table 100" in text
        assert "PostUp = ip rule add from 10.0.0.3 table 100" in text
        assert f"AllowedIPs = {ROUTE_ALL}" in text


class TestUpdatePeer(TestPeerManagerBase):
    """Tests for update_peer"""

    def test_updates_fields(self, peer_manager):
        """Test plain edit bumps updated_at"""
        peer = peer_manager.create_peer("a")

        updated = peer_manager.update_peer(peer.id, name="  renamed ", dns="1.1.1.1")

        assert updated.name == "renamed"
        assert updated.dns == "1.1.1.1"
        assert updated.updated_at >= peer.updated_at
        assert updated.created_at == peer.created_at

    def test_unflag_exit_node_scenario(self, peer_manager, exit_node, client):
        """Test unflagging clears references, table and routing output"""
        updated = peer_manager.update_peer(exit_node.id, is_exit_node=False)

        assert updated.routing_table_id is None
        assert peer_manager.get_peer(client.id).exit_node_id == ""
        text = peer_manager.store.server_config_text()
        assert "ip route" not in text
        assert "ip rule" not in text
        assert ROUTE_ALL not in text
        assert_invariants(peer_manager)

    def test_flag_exit_node(self, peer_manager, exit_node, client):
        """Test flagging assigns a table and drops its own reference"""
        updated = peer_manager.update_peer(client.id, is_exit_node=True)

        assert updated.routing_table_id == 101
        assert updated.exit_node_id == ""
        assert_invariants(peer_manager)

    def test_disable_exit_node_via_update(self, peer_manager, exit_node, client):
        """Test disabling through update cascades too"""
        peer_manager.update_peer(exit_node.id, enabled=False)

        assert peer_manager.get_peer(client.id).exit_node_id == ""
        assert peer_manager.get_peer(exit_node.id).routing_table_id == 100
        assert_invariants(peer_manager)

    def test_invalid_update_rolls_back(self, peer_manager):
        """Test failed update leaves the peer unchanged"""
        peer = peer_manager.create_peer("a")

        with pytest.raises(ValidationErrors):
            peer_manager.update_peer(peer.id, name="", persistent_keepalive=-1)

        assert peer_manager.get_peer(peer.id).name == "a"

    def test_duplicate_on_update(self, peer_manager):
        """Test taking another peer's address"""
        a = peer_manager.create_peer("a")
        b = peer_manager.create_peer("b")

        with pytest.raises(ValidationErrors) as exc:
            peer_manager.update_peer(b.id, allowed_ips=a.allowed_ips)

        assert exc.value.has_field("allowedIPs")

    def test_unknown_field(self, peer_manager):
        """Test non-editable fields are refused"""
        peer = peer_manager.create_peer("a")

        with pytest.raises(ValueError):
            peer_manager.update_peer(peer.id, public_key="x")

    def test_missing_peer(self, peer_manager):
        """Test unknown id"""
        with pytest.raises(PeerNotFound):
            peer_manager.update_peer("nope", name="x")


class TestToggleDeleteRegenerate(TestPeerManagerBase):
    """Tests for toggle_peer, delete_peer and regenerate_keys"""

    def test_toggle(self, peer_manager):
        """Test enabled flips and the section disappears"""
        peer = peer_manager.create_peer("a")

        assert peer_manager.toggle_peer(peer.id).enabled is False
        assert "# a" not in peer_manager.store.server_config_text()
        assert peer_manager.toggle_peer(peer.id).enabled is True

    def test_toggle_exit_node_cascades(self, peer_manager, exit_node, client):
        """Test disabling an exit node clears dependents"""
        peer_manager.toggle_peer(exit_node.id)

        assert peer_manager.get_peer(client.id).exit_node_id == ""
        assert peer_manager.exit_nodes() == []
        assert_invariants(peer_manager)

    def test_toggle_on_with_clashing_address(self, peer_manager):
        """Test re-enabling is refused when the address was taken meanwhile"""
        a = peer_manager.create_peer("a")
        peer_manager.toggle_peer(a.id)
        peer_manager.create_peer("b", allowed_ips=a.allowed_ips)

        with pytest.raises(ValidationErrors):
            peer_manager.toggle_peer(a.id)

        assert peer_manager.get_peer(a.id).enabled is False

    def test_delete_exit_node_cascades(self, peer_manager, exit_node, client):
        """Test deletion clears references"""
        peer_manager.delete_peer(exit_node.id)

        assert [p.id for p in peer_manager.list_peers()] == [client.id]
        assert peer_manager.get_peer(client.id).exit_node_id == ""

    def test_delete_missing(self, peer_manager):
        """Test unknown id"""
        with pytest.raises(PeerNotFound):
            peer_manager.delete_peer("nope")

    def test_regenerate_keys(self, peer_manager):
        """Test new consistent key pair"""
        peer = peer_manager.create_peer("a")

        updated = peer_manager.regenerate_keys(peer.id)

        assert updated.private_key != peer.private_key
        assert public_key_from_private(updated.private_key) == updated.public_key
        assert peer_manager.find_by_public_key(updated.public_key).id == peer.id
        assert peer_manager.find_by_public_key(peer.public_key) is None

    def test_operation_sequence_keeps_invariants(self, peer_manager):
        """Test invariants after a mixed sequence of changes"""
        e1 = peer_manager.create_peer("e1", is_exit_node=True)
        e2 = peer_manager.create_peer("e2", is_exit_node=True)
        clients = [peer_manager.create_peer(f"c{i}", exit_node_id=(e1 if i % 2 else e2).id) for i in range(4)]

        peer_manager.toggle_peer(e1.id)
        assert_invariants(peer_manager)
        peer_manager.update_peer(clients[0].id, exit_node_id=e2.id)
        peer_manager.delete_peer(e2.id)
        assert_invariants(peer_manager)
        peer_manager.toggle_peer(e1.id)
        peer_manager.update_peer(clients[1].id, exit_node_id=e1.id)
        peer_manager.update_peer(e1.id, is_exit_node=False)
        assert_invariants(peer_manager)

        assert all(p.exit_node_id == "" for p in peer_manager.list_peers())
        assert "ip rule" not in peer_manager.store.server_config_text()


class TestServer:
    """Tests for update_server and ensure_server_keys"""

    def test_update_server(self, peer_manager):
        """Test valid change is stored and rendered"""
        server = peer_manager.update_server(listen_port=51821, dns=" 1.1.1.1 ")

        assert server.listen_port == 51821
        assert server.dns == "1.1.1.1"
        assert "ListenPort = 51821" in peer_manager.store.wg_config_path.read_text()

    def test_invalid_server(self, peer_manager):
        """Test bad values are refused"""
        with pytest.raises(ValidationErrors) as exc:
            peer_manager.update_server(listen_port=0, mtu=100)

        assert {e.field for e in exc.value.errors} == {"listenPort", "mtu"}
        assert peer_manager.server().listen_port == 51820

    def test_subnet_change_rechecks_peers(self, peer_manager):
        """Test moving the subnet away from existing peers"""
        peer_manager.create_peer("a")

        with pytest.raises(ValidationErrors):
            peer_manager.update_server(address="10.9.0.1/24")

        assert peer_manager.server().address == "10.0.0.1/24"

    def test_unknown_server_field(self, peer_manager):
        """Test private key cannot be set directly"""
        with pytest.raises(ValueError):
            peer_manager.update_server(private_key="x")

    def test_ensure_server_keys(self, tmp_path):
        """Test first run generates a key exactly once"""
        store = ConfigStore(tmp_path / "c.yaml", tmp_path / "wg0.conf", AppState.with_defaults())
        manager = PeerManager(store)

        assert manager.ensure_server_keys() is True
        key = manager.server().private_key
        assert key
        assert manager.ensure_server_keys() is False
        assert manager.server().private_key == key
        assert f"PrivateKey = {key}" in (tmp_path / "wg0.conf").read_text()


class TestOutsideSubnet(TestPeerManagerBase):
    """Tests for the stored subnet override"""

    @pytest.fixture
    def site(self, peer_manager):
        return peer_manager.create_peer("site", allowed_ips="192.168.5.1/32", allow_outside_subnet=True)

    def test_override_is_stored(self, peer_manager, site):
        """Test the flag reaches the model and the state file"""
        assert site.allow_outside_subnet is True
        assert "allowOutsideSubnet: true" in peer_manager.store.config_path.read_text()

    def test_rename_site_peer(self, peer_manager, site):
        """Test later edits keep the override"""
        updated = peer_manager.update_peer(site.id, name="site-renamed")

        assert updated.name == "site-renamed"
        assert updated.allowed_ips == "192.168.5.1/32"

    def test_server_address_change_with_site_peer(self, peer_manager, site):
        """Test widening the subnet does not trip over the site peer"""
        server = peer_manager.update_server(address="10.0.0.1/16")

        assert server.address == "10.0.0.1/16"

    def test_clearing_override_rechecks(self, peer_manager, site):
        """Test dropping the flag puts the address back under the subnet check"""
        with pytest.raises(ValidationErrors) as exc:
            peer_manager.update_peer(site.id, allow_outside_subnet=False)

        assert exc.value.for_field("allowedIPs")[0].kind == ErrorKind.RANGE
        assert peer_manager.get_peer(site.id).allow_outside_subnet is True

    def test_set_override_on_update(self, peer_manager):
        """Test moving a peer outside the subnet together with the flag"""
        peer = peer_manager.create_peer("a")

        updated = peer_manager.update_peer(peer.id, allowed_ips="172.16.0.9/32", allow_outside_subnet=True)

        assert updated.allowed_ips == "172.16.0.9/32"

    @pytest.mark.parametrize("reenable", ["toggle", "update"])
    def test_reenable_after_subnet_move(self, peer_manager, site, reenable):
        """Test toggle and update apply the same checks when re-enabling"""
        regular = peer_manager.create_peer("regular")
        peer_manager.toggle_peer(site.id)
        peer_manager.toggle_peer(regular.id)
        peer_manager.update_server(address="10.9.0.1/24")

        def _enable(peer_id):
            if reenable == "toggle":
                return peer_manager.toggle_peer(peer_id)
            return peer_manager.update_peer(peer_id, enabled=True)

        assert _enable(site.id).enabled is True
        with pytest.raises(ValidationErrors) as exc:
            _enable(regular.id)
        assert exc.value.for_field("allowedIPs")[0].kind == ErrorKind.RANGE
        assert peer_manager.get_peer(regular.id).enabled is False


class TestFieldTypes(TestPeerManagerBase):
    """Tests for values of the wrong type"""

    def test_numeric_string_is_coerced(self, peer_manager):
        """Test a keepalive given as text is stored as a number"""
        peer = peer_manager.create_peer("a")

        updated = peer_manager.update_peer(peer.id, persistent_keepalive="25")

        assert updated.persistent_keepalive == 25

    def test_bad_type_is_a_field_error(self, peer_manager):
        """Test a non-numeric keepalive is reported on its field"""
        peer = peer_manager.create_peer("a")

        with pytest.raises(ValidationErrors) as exc:
            peer_manager.update_peer(peer.id, persistent_keepalive="soon")

        assert exc.value.has_field("persistentKeepalive")
        assert peer_manager.get_peer(peer.id).persistent_keepalive == 0

    def test_bad_type_on_create(self, peer_manager):
        """Test constructor type errors use the same field names"""
        with pytest.raises(ValidationErrors) as exc:
            peer_manager.create_peer("a", persistent_keepalive="soon")

        assert exc.value.has_field("persistentKeepalive")
        assert peer_manager.list_peers() == []

    def test_bad_server_type(self, peer_manager):
        """Test server fields are checked the same way"""
        with pytest.raises(ValidationErrors) as exc:
            peer_manager.update_server(listen_port="high", mtu="big")

        assert {e.field for e in exc.value.errors} == {"listenPort", "mtu"}
        assert peer_manager.server().listen_port == 51820
