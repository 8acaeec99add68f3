"""
WireGuard Live Interface Tests

BDD-style tests (Given/When/Then) for:
- Peer add/remove command construction and configuration persistence
- Input validation before any tool call
- Failure propagation with the tool's diagnostic text
- 'wg show dump' parsing and online detection
- Boot-time peer re-sync
"""

import subprocess
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import call, patch

import pytest

from wgpanel.networking.wireguard_interface import (
    ONLINE_THRESHOLD_SECONDS,
    InterfaceError,
    InvalidPeerInputError,
    WireGuardInterface,
    parse_dump,
    validate_ip,
)
from wgpanel.networking.wireguard_keys import generate_keypair

PEER_KEY = generate_keypair()[1]
OTHER_KEY = generate_keypair()[1]


class TestValidateIp:
    """Tests for dotted-quad address validation."""

    @pytest.mark.parametrize("address", ["10.8.0.2", "0.0.0.0", "255.255.255.255"])
    def test_valid_addresses(self, address):
        assert validate_ip(address) is True

    @pytest.mark.parametrize(
        "address",
        [
            "", "10.8.0", "10.8.0.256", "10.8.0.2/32", "a.b.c.d", "10.8.0.2; reboot", None, "::1",
            "10.8.0.2\n", " 10.8.0.2", "１０.8.0.2", "١٠.8.0.2",
        ],
    )
    def test_invalid_addresses(self, address):
        assert validate_ip(address) is False


class TestAddPeer:
    """Tests for adding a peer to the live interface."""

    def test_add_peer_runs_set_then_save(self, wg_interface):
        """
        Given a valid key and address
        When adding the peer
        Then should run 'wg set' with a /32 allowed-ips and then 'wg-quick save'
        """
        wg_interface.add_peer(PEER_KEY, "10.8.0.2")

        assert wg_interface._execute_command.call_args_list == [
            call("wg", "set", "wg0", "peer", PEER_KEY, "allowed-ips", "10.8.0.2/32"),
            call("wg-quick", "save", "wg0"),
        ]

    def test_add_peer_rejects_bad_key_without_tool_call(self, wg_interface):
        """
        Given a malformed public key
        When adding the peer
        Then should raise InvalidPeerInputError and never invoke the tool
        """
        with pytest.raises(InvalidPeerInputError):
            wg_interface.add_peer("not-a-key", "10.8.0.2")

        wg_interface._execute_command.assert_not_called()

    def test_add_peer_rejects_bad_address_without_tool_call(self, wg_interface):
        with pytest.raises(InvalidPeerInputError):
            wg_interface.add_peer(PEER_KEY, "10.8.0.300")

        wg_interface._execute_command.assert_not_called()

    @pytest.mark.parametrize("address", ["10.8.0.2\n", "１０.8.0.2"])
    def test_add_peer_rejects_trailing_newline_and_non_ascii_digits(self, wg_interface, address):
        """
        Given an address that only looks like a dotted quad
        When adding the peer
        Then should raise InvalidPeerInputError before any tool call
        """
        with pytest.raises(InvalidPeerInputError):
            wg_interface.add_peer(PEER_KEY, address)

        wg_interface._execute_command.assert_not_called()

    def test_add_peer_failure_carries_stderr(self, wg_interface):
        """
        Given the tool exits non-zero
        When adding the peer
        Then should raise InterfaceError with the tool's message and skip the save
        """
        wg_interface._execute_command.return_value = (1, "", "Unable to modify interface: Operation not permitted")

        with pytest.raises(InterfaceError) as exc_info:
            wg_interface.add_peer(PEER_KEY, "10.8.0.2")

        assert "Operation not permitted" in str(exc_info.value)
        assert exc_info.value.stderr == "Unable to modify interface: Operation not permitted"
        assert wg_interface._execute_command.call_count == 1

    def test_save_failure_is_reported(self, wg_interface):
        wg_interface._execute_command.side_effect = [(0, "", ""), (1, "", "save failed")]

        with pytest.raises(InterfaceError, match="save failed"):
            wg_interface.add_peer(PEER_KEY, "10.8.0.2")


class TestRemovePeer:
    """Tests for removing a peer from the live interface."""

    def test_remove_peer_runs_remove_then_save(self, wg_interface):
        wg_interface.remove_peer(PEER_KEY)

        assert wg_interface._execute_command.call_args_list == [
            call("wg", "set", "wg0", "peer", PEER_KEY, "remove"),
            call("wg-quick", "save", "wg0"),
        ]

    def test_remove_peer_rejects_bad_key(self, wg_interface):
        with pytest.raises(InvalidPeerInputError):
            wg_interface.remove_peer("")

        wg_interface._execute_command.assert_not_called()

    def test_remove_peer_failure(self, wg_interface):
        wg_interface._execute_command.return_value = (1, "", "No such device")

        with pytest.raises(InterfaceError, match="No such device"):
            wg_interface.remove_peer(PEER_KEY)


class TestParseDump:
    """Tests for 'wg show <iface> dump' parsing."""

    NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def _dump(self, *peer_lines):
        header = "cHJpdmF0ZQ==\tcHVibGlj\t51820\toff"
        return "\n".join((header,) + peer_lines)

    def test_parses_online_peer(self):
        """
        Given a peer whose handshake is 60 seconds old
        When parsing the dump
        Then the peer should be online with its endpoint and transfer counters
        """
        handshake = int((self.NOW - timedelta(seconds=60)).timestamp())
        output = self._dump(
            f"{PEER_KEY}\t(none)\t203.0.113.7:41000\t10.8.0.2/32\t{handshake}\t1024\t2048\t25"
        )

        stats = parse_dump(output, now=self.NOW)

        peer = stats[PEER_KEY]
        assert peer.is_online is True
        assert peer.endpoint == "203.0.113.7:41000"
        assert peer.transfer_rx == 1024
        assert peer.transfer_tx == 2048
        assert peer.latest_handshake == datetime.fromtimestamp(handshake, tz=timezone.utc)

    def test_stale_handshake_is_offline(self):
        handshake = int((self.NOW - timedelta(seconds=ONLINE_THRESHOLD_SECONDS)).timestamp())
        output = self._dump(
            f"{PEER_KEY}\t(none)\t203.0.113.7:41000\t10.8.0.2/32\t{handshake}\t0\t0\toff"
        )

        assert parse_dump(output, now=self.NOW)[PEER_KEY].is_online is False

    def test_never_connected_peer(self):
        """
        Given a peer with handshake 0 and endpoint '(none)'
        When parsing the dump
        Then the peer should be offline with empty endpoint and no handshake time
        """
        output = self._dump(f"{PEER_KEY}\t(none)\t(none)\t10.8.0.2/32\t0\t0\t0\toff")

        peer = parse_dump(output, now=self.NOW)[PEER_KEY]
        assert peer.is_online is False
        assert peer.endpoint == ""
        assert peer.latest_handshake is None

    def test_skips_interface_line_and_short_lines(self):
        output = self._dump(
            "garbage\tline",
            f"{OTHER_KEY}\t(none)\t(none)\t10.8.0.3/32\t0\t0\t0\toff",
        )

        stats = parse_dump(output, now=self.NOW)

        assert list(stats) == [OTHER_KEY]

    def test_empty_output(self):
        assert parse_dump("", now=self.NOW) == {}


class TestReadLiveStats:
    """Tests for reading statistics through the tool."""

    def test_reads_dump(self, wg_interface):
        wg_interface._execute_command.return_value = (
            0,
            f"header\tx\t51820\toff\n{PEER_KEY}\t(none)\t(none)\t10.8.0.2/32\t0\t10\t20\toff",
            "",
        )

        stats = wg_interface.read_live_stats()

        wg_interface._execute_command.assert_called_once_with("wg", "show", "wg0", "dump")
        assert stats[PEER_KEY].transfer_rx == 10

    def test_dump_failure_raises(self, wg_interface):
        wg_interface._execute_command.return_value = (1, "", "Unable to access interface")

        with pytest.raises(InterfaceError):
            wg_interface.read_live_stats()


class TestSyncPeers:
    """Tests for boot-time re-sync of registry peers."""

    def test_sync_adds_only_enabled_peers_and_continues_on_failure(self, wg_interface):
        """
        Given two enabled peers (one failing) and one disabled peer
        When syncing
        Then both enabled peers are attempted, the failure is reported, the disabled peer is skipped
        """
        peers = [
            SimpleNamespace(name="laptop", public_key=PEER_KEY, assigned_ip="10.8.0.2", enabled=True),
            SimpleNamespace(name="broken", public_key="bad-key", assigned_ip="10.8.0.3", enabled=True),
            SimpleNamespace(name="phone", public_key=OTHER_KEY, assigned_ip="10.8.0.4", enabled=False),
        ]

        failed = wg_interface.sync_peers(peers)

        assert failed == ["broken"]
        set_calls = [c for c in wg_interface._execute_command.call_args_list if c.args[0] == "wg"]
        assert len(set_calls) == 1
        assert PEER_KEY in set_calls[0].args


class TestExecuteCommand:
    """Tests for the subprocess boundary."""

    def test_missing_tool_raises_interface_error(self):
        interface = WireGuardInterface("wg0")

        with patch("wgpanel.networking.wireguard_interface.subprocess.run", side_effect=FileNotFoundError):
            with pytest.raises(InterfaceError, match="not found"):
                interface.show_status()

    def test_timeout_raises_interface_error(self):
        interface = WireGuardInterface("wg0", command_timeout=5)

        with patch(
            "wgpanel.networking.wireguard_interface.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="wg", timeout=5),
        ):
            with pytest.raises(InterfaceError, match="timed out"):
                interface.show_status()

    def test_uses_argument_vector_without_shell(self):
        interface = WireGuardInterface("wg0")
        completed = subprocess.CompletedProcess(args=[], returncode=0, stdout="interface: wg0\n", stderr="")

        with patch("wgpanel.networking.wireguard_interface.subprocess.run", return_value=completed) as mock_run:
            assert interface.show_status() == "interface: wg0"

        args, kwargs = mock_run.call_args
        assert args[0] == ["wg", "show", "wg0"]
        assert "shell" not in kwargs
