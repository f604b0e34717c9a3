from unittest.mock import MagicMock

import pytest

from admin_loaders import ADMIN_TABS, Failed, Idle, Loaded, TabLoaders, build_admin_loaders
from api_client import AdminClient, ApiError, SessionExpiredError


class TestTabLoaders:
    def test_tabs_start_idle(self):
        loaders = TabLoaders({"users": lambda: []})
        assert loaders.tabs == ["users"]
        assert loaders.state("users") == Idle()

    def test_activate_records_loaded_data(self):
        loaders = TabLoaders({"users": lambda: [{"_id": "u"}]})
        assert loaders.activate("users") == Loaded([{"_id": "u"}])
        assert loaders.state("users") == Loaded([{"_id": "u"}])

    def test_api_error_becomes_failed(self):
        def _boom():
            raise ApiError("HTTP 500", status_code=500)

        loaders = TabLoaders({"posts": _boom})
        assert loaders.activate("posts") == Failed("HTTP 500")

    def test_session_expiry_notifies_caller(self):
        expired = []

        def _forbidden():
            raise SessionExpiredError("Session expired. Please login again.", status_code=403)

        loaders = TabLoaders({"deals": _forbidden}, on_session_expired=lambda: expired.append(True))
        state = loaders.activate("deals")
        assert isinstance(state, Failed)
        assert expired == [True]

    def test_unknown_tab_raises(self):
        with pytest.raises(KeyError):
            TabLoaders().activate("nope")

    def test_ensure_loaded_runs_once(self):
        calls = []
        loaders = TabLoaders()
        loaders.register("trips", lambda: calls.append(1) or len(calls))
        loaders.ensure_loaded("trips")
        assert loaders.ensure_loaded("trips") == Loaded(1)
        assert loaders.activate("trips") == Loaded(2)

        loaders.reset()
        assert loaders.state("trips") == Idle()

    def test_other_errors_propagate(self):
        def _bug():
            raise RuntimeError("bug")

        with pytest.raises(RuntimeError):
            TabLoaders({"events": _bug}).activate("events")


def test_build_admin_loaders_covers_every_tab():
    client = MagicMock(spec=AdminClient)
    client.list_users.return_value = [{"_id": "u"}]
    search = {"term": "ana"}

    loaders = build_admin_loaders(client, user_search=lambda: search["term"])
    assert loaders.tabs == list(ADMIN_TABS)

    assert loaders.activate("users") == Loaded([{"_id": "u"}])
    client.list_users.assert_called_once_with("ana")

    loaders.activate("businesses")
    client.list_pending_businesses.assert_called_once_with()
