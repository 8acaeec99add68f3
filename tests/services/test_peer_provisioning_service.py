"""
Peer Provisioning Service Tests

BDD-style tests (Given/When/Then) for the registry/interface
orchestration:
- Create with compensating rollback on interface failure
- Enable/disable touching the interface only on state change
- Delete ordering (interface first, registry second)
- List with best-effort live statistics and connection logging
- Client profile and QR retrieval
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from wgpanel.models.peer import Peer
from wgpanel.networking.wireguard_interface import InterfaceError, InvalidPeerInputError
from wgpanel.services.peer_provisioning_service import ProvisioningFailedError
from wgpanel.services.peer_registry import AddressSpaceExhaustedError, PeerNotFoundError
from wgpanel.services.settings_service import LOGGING_ENABLED_KEY


def _dump_for(*peers):
    """Build 'wg show dump' output for (public_key, endpoint, handshake) tuples"""
    lines = ["privkey\tpubkey\t51820\toff"]
    for public_key, endpoint, handshake in peers:
        lines.append(f"{public_key}\t(none)\t{endpoint}\t10.8.0.0/32\t{handshake}\t100\t200\t25")
    return "\n".join(lines)


class TestCreatePeer:
    """Tests for peer creation."""

    def test_create_peer_records_and_adds_live(self, provisioning_service, registry, wg_interface):
        """
        Given an empty registry
        When creating a peer
        Then it is recorded enabled at .2 and added to the interface with its public key
        """
        peer = provisioning_service.create_peer("laptop")

        assert peer.assigned_ip == "10.8.0.2"
        assert peer.enabled is True
        assert registry.get_by_address("10.8.0.2").public_key == peer.public_key

        first_call = wg_interface._execute_command.call_args_list[0]
        assert first_call.args == ("wg", "set", "wg0", "peer", peer.public_key, "allowed-ips", "10.8.0.2/32")

    def test_sequential_creates_get_distinct_addresses(self, provisioning_service):
        addresses = [provisioning_service.create_peer(f"peer-{i}").assigned_ip for i in range(3)]

        assert addresses == ["10.8.0.2", "10.8.0.3", "10.8.0.4"]

    def test_interface_failure_rolls_back_registry(self, provisioning_service, registry, wg_interface):
        """
        Given the interface rejects the new peer
        When creating a peer
        Then ProvisioningFailedError is raised and no registry row remains
        """
        wg_interface._execute_command.return_value = (1, "", "Operation not permitted")

        with pytest.raises(ProvisioningFailedError) as exc_info:
            provisioning_service.create_peer("laptop")

        assert "Operation not permitted" in str(exc_info.value)
        assert exc_info.value.rollback_succeeded is True
        assert registry.list() == []

    def test_address_freed_by_rollback_is_reused(self, provisioning_service, wg_interface):
        wg_interface._execute_command.return_value = (1, "", "boom")
        with pytest.raises(ProvisioningFailedError):
            provisioning_service.create_peer("first")

        wg_interface._execute_command.return_value = (0, "", "")
        assert provisioning_service.create_peer("second").assigned_ip == "10.8.0.2"

    def test_failed_rollback_is_reported(self, provisioning_service, registry, wg_interface):
        """
        Given the interface rejects the peer and the compensating delete also fails
        When creating a peer
        Then ProvisioningFailedError reports the rollback failure
        """
        wg_interface._execute_command.return_value = (1, "", "boom")

        with patch.object(registry, "delete_by_address", side_effect=RuntimeError("disk I/O error")):
            with pytest.raises(ProvisioningFailedError) as exc_info:
                provisioning_service.create_peer("laptop")

        assert exc_info.value.rollback_succeeded is False

    def test_exhausted_subnet_writes_nothing(self, provisioning_service, registry, wg_interface):
        with patch.object(
            registry,
            "allocate_next_address",
            side_effect=AddressSpaceExhaustedError("10.8.0.0/24", 253),
        ):
            with pytest.raises(AddressSpaceExhaustedError):
                provisioning_service.create_peer("laptop")

        assert registry.list() == []
        wg_interface._execute_command.assert_not_called()


class TestUpdatePeer:
    """Tests for rename and enable/disable."""

    def test_disable_removes_from_interface(self, provisioning_service, wg_interface):
        peer = provisioning_service.create_peer("laptop")
        public_key = peer.public_key
        wg_interface._execute_command.reset_mock()

        updated = provisioning_service.update_peer("10.8.0.2", enabled=False)

        assert updated.enabled is False
        assert wg_interface._execute_command.call_args_list[0].args == (
            "wg", "set", "wg0", "peer", public_key, "remove",
        )

    def test_enable_adds_to_interface(self, provisioning_service, wg_interface):
        provisioning_service.create_peer("laptop")
        provisioning_service.update_peer("10.8.0.2", enabled=False)
        wg_interface._execute_command.reset_mock()

        updated = provisioning_service.update_peer("10.8.0.2", enabled=True)

        assert updated.enabled is True
        assert "allowed-ips" in wg_interface._execute_command.call_args_list[0].args

    def test_unchanged_flag_does_not_touch_interface(self, provisioning_service, wg_interface):
        """
        Given an enabled peer
        When enabling it again
        Then the interface is not invoked (idempotent)
        """
        provisioning_service.create_peer("laptop")
        wg_interface._execute_command.reset_mock()

        provisioning_service.update_peer("10.8.0.2", enabled=True)

        wg_interface._execute_command.assert_not_called()

    def test_rename_only_touches_registry(self, provisioning_service, wg_interface):
        provisioning_service.create_peer("laptop")
        wg_interface._execute_command.reset_mock()

        updated = provisioning_service.update_peer("10.8.0.2", name="work laptop")

        assert updated.name == "work laptop"
        wg_interface._execute_command.assert_not_called()

    def test_interface_failure_leaves_registry_unchanged(self, provisioning_service, registry, wg_interface):
        """
        Given the interface refuses to remove the peer
        When disabling
        Then InterfaceError propagates and the registry still says enabled
        """
        provisioning_service.create_peer("laptop")
        wg_interface._execute_command.return_value = (1, "", "No such device")

        with pytest.raises(InterfaceError):
            provisioning_service.update_peer("10.8.0.2", name="renamed", enabled=False)

        peer = registry.get_by_address("10.8.0.2")
        assert peer.enabled is True
        assert peer.name == "laptop"

    def test_invalid_address(self, provisioning_service, wg_interface):
        with pytest.raises(InvalidPeerInputError):
            provisioning_service.update_peer("10.8.0", enabled=False)

        wg_interface._execute_command.assert_not_called()

    def test_missing_peer(self, provisioning_service):
        with pytest.raises(PeerNotFoundError):
            provisioning_service.update_peer("10.8.0.9", enabled=False)


class TestDeletePeer:
    """Tests for peer deletion."""

    def test_delete_removes_from_interface_then_registry(self, provisioning_service, registry, wg_interface):
        peer = provisioning_service.create_peer("laptop")
        public_key = peer.public_key
        wg_interface._execute_command.reset_mock()

        provisioning_service.delete_peer("10.8.0.2")

        assert wg_interface._execute_command.call_args_list[0].args == (
            "wg", "set", "wg0", "peer", public_key, "remove",
        )
        assert registry.find_by_address("10.8.0.2") is None

    def test_delete_missing_peer_never_calls_interface(self, provisioning_service, wg_interface):
        """
        Given no peer at 10.8.0.5
        When deleting 10.8.0.5
        Then PeerNotFoundError is raised with no interface call
        """
        with pytest.raises(PeerNotFoundError):
            provisioning_service.delete_peer("10.8.0.5")

        wg_interface._execute_command.assert_not_called()

    def test_interface_failure_retains_row(self, provisioning_service, registry, wg_interface):
        provisioning_service.create_peer("laptop")
        wg_interface._execute_command.return_value = (1, "", "No such device")

        with pytest.raises(InterfaceError):
            provisioning_service.delete_peer("10.8.0.2")

        assert registry.find_by_address("10.8.0.2") is not None

    def test_invalid_address(self, provisioning_service):
        with pytest.raises(InvalidPeerInputError):
            provisioning_service.delete_peer("not-an-ip")


class TestListPeers:
    """Tests for listing peers with live statistics."""

    def test_merges_live_stats(self, provisioning_service, wg_interface):
        peer = provisioning_service.create_peer("laptop")
        handshake = int(datetime.now(timezone.utc).timestamp()) - 10
        wg_interface._execute_command.return_value = (
            0, _dump_for((peer.public_key, "203.0.113.7:41000", handshake)), "",
        )

        [status] = provisioning_service.list_peers()

        assert status.is_online is True
        assert status.stats.endpoint == "203.0.113.7:41000"
        assert status.stats.transfer_rx == 100

    def test_stats_failure_degrades_to_registry_data(self, provisioning_service, wg_interface):
        """
        Given the live statistics read fails
        When listing peers
        Then all registry peers are returned with zeroed stats
        """
        provisioning_service.create_peer("laptop")
        provisioning_service.create_peer("phone")
        wg_interface._execute_command.return_value = (1, "", "Unable to access interface")

        statuses = provisioning_service.list_peers()

        assert len(statuses) == 2
        assert all(s.stats is None and s.is_online is False for s in statuses)

    def test_connection_logged_when_enabled(self, provisioning_service, settings_service, registry, wg_interface):
        """
        Given connection logging is enabled and a peer is online
        When listing peers twice
        Then exactly one connection log row is written
        """
        settings_service.set(LOGGING_ENABLED_KEY, "true")
        peer = provisioning_service.create_peer("laptop")
        peer_id = peer.id
        handshake = int(datetime.now(timezone.utc).timestamp()) - 10
        wg_interface._execute_command.return_value = (
            0, _dump_for((peer.public_key, "203.0.113.7:41000", handshake)), "",
        )

        provisioning_service.list_peers()
        provisioning_service.list_peers()

        logs = registry.get_connection_logs(peer_id)
        assert [log.endpoint for log in logs] == ["203.0.113.7:41000"]

    def test_no_connection_log_when_disabled(self, provisioning_service, registry, wg_interface):
        peer = provisioning_service.create_peer("laptop")
        peer_id = peer.id
        handshake = int(datetime.now(timezone.utc).timestamp()) - 10
        wg_interface._execute_command.return_value = (
            0, _dump_for((peer.public_key, "203.0.113.7:41000", handshake)), "",
        )

        provisioning_service.list_peers()

        assert registry.get_connection_logs(peer_id) == []


    def test_connection_log_failure_does_not_fail_listing(
        self, provisioning_service, settings_service, db_session, wg_interface
    ):
        """
        Given connection logging is enabled and the log write fails
        When listing peers
        Then every peer is still returned with its live stats
        """
        settings_service.set(LOGGING_ENABLED_KEY, "true")
        peer = provisioning_service.create_peer("laptop")
        handshake = int(datetime.now(timezone.utc).timestamp()) - 10
        wg_interface._execute_command.return_value = (
            0, _dump_for((peer.public_key, "203.0.113.7:41000", handshake)), "",
        )
        locked = OperationalError("INSERT INTO connection_logs", {}, Exception("database is locked"))

        with patch.object(db_session, "commit", side_effect=locked):
            [status] = provisioning_service.list_peers()

        assert status.peer.assigned_ip == "10.8.0.2"
        assert status.is_online is True


class TestClientArtifacts:
    """Tests for client profile, QR and log retrieval."""

    def test_client_config_uses_current_settings(self, provisioning_service, settings_service, wg_config):
        peer = provisioning_service.create_peer("laptop")
        private_key = peer.private_key
        settings_service.update(dns="9.9.9.9")

        config = provisioning_service.get_client_config("10.8.0.2")

        assert f"PrivateKey = {private_key}\n" in config
        assert "Address = 10.8.0.2/32\n" in config
        assert "DNS = 9.9.9.9\n" in config
        assert f"PublicKey = {wg_config.server_public_key}\n" in config

    def test_client_config_is_stable(self, provisioning_service):
        provisioning_service.create_peer("laptop")

        assert provisioning_service.get_client_config("10.8.0.2") == provisioning_service.get_client_config("10.8.0.2")

    def test_qr_code_is_png(self, provisioning_service):
        provisioning_service.create_peer("laptop")

        assert provisioning_service.get_qr_code("10.8.0.2").startswith(b"\x89PNG")

    def test_missing_peer_artifacts(self, provisioning_service):
        with pytest.raises(PeerNotFoundError):
            provisioning_service.get_client_config("10.8.0.9")
        with pytest.raises(PeerNotFoundError):
            provisioning_service.get_peer_logs("10.8.0.9")


class FakeWireGuard:
    """Stateful stand-in for the wg tool: tracks the live peer set"""

    def __init__(self):
        self.peers = {}

    def __call__(self, *args):
        if args[:2] == ("wg", "set") and args[-1] == "remove":
            self.peers.pop(args[4], None)
        elif args[:2] == ("wg", "set"):
            self.peers[args[4]] = args[-1]
        elif args[:2] == ("wg", "show") and args[-1] == "dump":
            lines = ["privkey\tpubkey\t51820\toff"]
            lines += [f"{key}\t(none)\t(none)\t{ips}\t0\t0\t0\toff" for key, ips in self.peers.items()]
            return 0, "\n".join(lines), ""
        return 0, "", ""


class TestLiveSetInvariant:
    """The live interface peer set follows successful create/disable/delete."""

    def test_create_then_delete(self, provisioning_service, wg_interface):
        """
        Given a stateful interface
        When a peer is created, then deleted
        Then its key appears in the live dump after create and is gone after delete
        """
        wg_interface._execute_command.side_effect = FakeWireGuard()

        peer = provisioning_service.create_peer("laptop")
        public_key = peer.public_key
        assert public_key in wg_interface.read_live_stats()

        provisioning_service.delete_peer("10.8.0.2")
        assert public_key not in wg_interface.read_live_stats()

    def test_disable_and_enable(self, provisioning_service, wg_interface):
        wg_interface._execute_command.side_effect = FakeWireGuard()
        public_key = provisioning_service.create_peer("laptop").public_key

        provisioning_service.update_peer("10.8.0.2", enabled=False)
        assert public_key not in wg_interface.read_live_stats()

        provisioning_service.update_peer("10.8.0.2", enabled=True)
        assert public_key in wg_interface.read_live_stats()


class TestLastFreeAddress:
    """Boundary behaviour at the end of the subnet."""

    def test_last_address_then_exhausted(self, provisioning_service, registry, db_session, wg_interface):
        """
        Given every host address but .254 allocated
        When creating two peers
        Then the first gets .254 and the second fails with no new row
        """
        for host in range(2, 254):
            db_session.add(
                Peer(
                    name=f"p{host}",
                    public_key=f"pk-{host}",
                    private_key=f"sk-{host}",
                    assigned_ip=f"10.8.0.{host}",
                    enabled=True,
                )
            )
        db_session.commit()

        peer = provisioning_service.create_peer("last")
        assert peer.assigned_ip == "10.8.0.254"
        wg_interface._execute_command.reset_mock()

        with pytest.raises(AddressSpaceExhaustedError):
            provisioning_service.create_peer("one-too-many")

        assert len(registry.list()) == 253
        wg_interface._execute_command.assert_not_called()
