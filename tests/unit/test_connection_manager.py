# =============================================================================
# tests/unit/test_connection_manager.py
# Unit Tests for ConnectionManager
# =============================================================================

import pytest
import requests
from unittest.mock import MagicMock, patch

from muhasel_core.offline import ConnectionManager, ConnectionStatus

HEAD_REQUEST = "muhasel_core.offline.connection_manager.requests.head"


@pytest.fixture
def manager():
    manager = ConnectionManager("http://muhasel.test/api", check_interval=3600, timeout=2)
    yield manager
    manager.stop_monitoring()


def response(status_code):
    mock_response = MagicMock()
    mock_response.status_code = status_code
    return mock_response


class TestCheckConnection:
    """Test the HEAD connectivity check"""

    def test_starts_unknown(self, manager):
        assert manager.status == ConnectionStatus.UNKNOWN
        assert not manager.is_online

    def test_success_is_online(self, manager):
        with patch(HEAD_REQUEST, return_value=response(200)) as head:
            state = manager.check_connection()

        assert state.is_online
        assert state.last_online is not None
        assert state.consecutive_failures == 0
        head.assert_called_once()
        assert head.call_args.args[0] == "http://muhasel.test/api"
        assert head.call_args.kwargs["timeout"] == 2

    def test_error_status_is_degraded(self, manager):
        with patch(HEAD_REQUEST, return_value=response(503)):
            state = manager.check_connection()

        assert state.status == ConnectionStatus.DEGRADED
        assert not manager.is_online
        assert state.error_message == "HTTP 503"

    def test_transport_failure_is_offline(self, manager):
        with patch(HEAD_REQUEST, side_effect=requests.exceptions.ConnectionError("refused")):
            manager.check_connection()
            manager.check_connection()

        assert manager.is_offline
        assert manager.state.consecutive_failures == 2

    def test_recovery_resets_failures(self, manager):
        with patch(HEAD_REQUEST, side_effect=requests.exceptions.Timeout("slow")):
            manager.check_connection()
        with patch(HEAD_REQUEST, return_value=response(204)):
            manager.check_connection()

        assert manager.is_online
        assert manager.state.consecutive_failures == 0

    def test_initialize_without_monitoring(self, manager):
        with patch(HEAD_REQUEST, return_value=response(200)):
            manager.initialize(start_monitoring=False)

        assert manager.is_online
        assert manager._monitor_thread is None


class TestListeners:
    """Test status change notifications"""

    def test_notified_on_change_only(self, manager):
        seen = []
        manager.add_listener(lambda state: seen.append(state.status))

        with patch(HEAD_REQUEST, return_value=response(200)):
            manager.check_connection()
            manager.check_connection()
        with patch(HEAD_REQUEST, side_effect=requests.exceptions.ConnectionError()):
            manager.check_connection()

        assert seen == [ConnectionStatus.ONLINE, ConnectionStatus.OFFLINE]

    def test_failing_listener_does_not_block_others(self, manager):
        seen = []

        def broken(state):
            raise RuntimeError("listener bug")

        manager.add_listener(broken)
        manager.add_listener(lambda state: seen.append(state.status))

        manager.force_offline()

        assert seen == [ConnectionStatus.OFFLINE]

    def test_unsubscribe(self, manager):
        seen = []
        unsubscribe = manager.add_listener(lambda state: seen.append(state.status))

        unsubscribe()
        unsubscribe()
        manager.force_offline()

        assert seen == []

    def test_listener_must_be_callable(self, manager):
        with pytest.raises(TypeError):
            manager.add_listener("not a function")


class TestForcedStatus:
    """Test force_offline / force_online / release"""

    def test_forced_offline_skips_head_request(self, manager):
        manager.force_offline()

        with patch(HEAD_REQUEST, return_value=response(200)) as head:
            manager.check_connection()

        head.assert_not_called()
        assert manager.is_offline
        assert manager.get_status_display()["forced"] is True

    def test_force_online(self, manager):
        manager.force_offline()
        manager.force_online()

        assert manager.is_online

    def test_release_checks_again(self, manager):
        manager.force_online()

        with patch(HEAD_REQUEST, side_effect=requests.exceptions.ConnectionError()) as head:
            state = manager.release()

        head.assert_called_once()
        assert state.status == ConnectionStatus.OFFLINE
        assert state.forced is False

    def test_status_display(self, manager):
        with patch(HEAD_REQUEST, return_value=response(200)):
            manager.check_connection()

        display = manager.get_status_display()

        assert display["status"] == "online"
        assert display["is_online"] is True
        assert display["last_check"] is not None
        assert display["error"] is None
