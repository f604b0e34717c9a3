from unittest.mock import MagicMock

import pytest
import requests

from api_client import AdminClient, ApiError, DealsClient, SessionExpiredError


def _response(status=200, payload=None):
    response = MagicMock(spec=requests.Response)
    response.status_code = status
    response.ok = status < 400
    response.content = b"" if payload is None else b"x"
    response.json.return_value = payload
    return response


def _session(*responses):
    session = MagicMock(spec=requests.Session)
    session.request.side_effect = list(responses)
    return session


class TestDealsClient:
    def test_list_deals_accepts_bare_list(self):
        session = _session(_response(payload=[{"_id": "a"}]))
        client = DealsClient(base_url="http://api.test/", session=session)
        assert client.list_deals() == [{"_id": "a"}]

        method, url = session.request.call_args.args
        assert (method, url) == ("GET", "http://api.test/api/deals")
        assert session.request.call_args.kwargs["params"]["isActive"] == "true"

    def test_list_deals_accepts_wrapped_payload(self):
        session = _session(_response(payload={"deals": [{"_id": "b"}], "newDealsCount": 1}))
        client = DealsClient(base_url="http://api.test", session=session)
        deals = client.list_deals(business_type="hotel", sort="trending", user_location=(6.9, 79.8), last_visit_ms=5)
        assert deals == [{"_id": "b"}]

        params = session.request.call_args.kwargs["params"]
        assert params["businessType"] == "hotel"
        assert (params["lat"], params["lng"]) == (6.9, 79.8)
        assert params["lastVisit"] == 5

    def test_all_category_is_not_sent(self):
        session = _session(_response(payload=[]))
        DealsClient(base_url="http://api.test", session=session).list_deals(business_type="all")
        assert "businessType" not in session.request.call_args.kwargs["params"]

    def test_claim_posts_user(self):
        session = _session(_response())
        DealsClient(base_url="http://api.test", session=session).claim_deal("d1", "u1")
        assert session.request.call_args.args == ("POST", "http://api.test/api/deals/d1/claim")
        assert session.request.call_args.kwargs["json"] == {"userId": "u1"}

    def test_http_error_raises(self):
        session = _session(_response(status=500))
        with pytest.raises(ApiError) as excinfo:
            DealsClient(base_url="http://api.test", session=session).view_deal("d1")
        assert excinfo.value.status_code == 500

    def test_transport_error_raises(self):
        session = _session(requests.ConnectionError("boom"))
        with pytest.raises(ApiError):
            DealsClient(base_url="http://api.test", session=session).list_deals()


class TestAdminClient:
    def test_sends_admin_secret(self):
        session = _session(_response(payload={"users": [{"_id": "u"}]}))
        client = AdminClient("s3cret", base_url="http://api.test", session=session)
        assert client.list_users("ana") == [{"_id": "u"}]

        kwargs = session.request.call_args.kwargs
        assert kwargs["headers"]["x-admin-secret"] == "s3cret"
        assert kwargs["params"] == {"search": "ana"}
        assert session.request.call_args.args == ("GET", "http://api.test/api/admin/users")

    def test_forbidden_means_session_expired(self):
        session = _session(_response(status=403))
        client = AdminClient("old", base_url="http://api.test", session=session)
        with pytest.raises(SessionExpiredError) as excinfo:
            client.get_dashboard()
        assert excinfo.value.status_code == 403
        assert isinstance(excinfo.value, ApiError)

    @pytest.mark.parametrize("call, method, path, body", [
        (lambda c: c.change_tier("u1", "premium"), "PUT", "/users/u1/tier", {"tier": "premium"}),
        (lambda c: c.delete_user("u1"), "DELETE", "/users/u1", None),
        (lambda c: c.bulk_update_roles(("u1", "u2"), "moderator"), "PUT", "/users/bulk-role",
         {"userIds": ["u1", "u2"], "role": "moderator"}),
        (lambda c: c.moderate_post("p1", "approved"), "PUT", "/posts/p1/moderate", {"status": "approved"}),
        (lambda c: c.delete_post("p1"), "DELETE", "/posts/p1", None),
        (lambda c: c.toggle_deal("d1"), "PUT", "/deals/d1/toggle", None),
        (lambda c: c.approve_business("b1", "hotel"), "PUT", "/businesses/b1/approve", {"type": "hotel"}),
    ])
    def test_mutations(self, call, method, path, body):
        session = _session(_response())
        call(AdminClient("s", base_url="http://api.test", session=session))
        assert session.request.call_args.args == (method, f"http://api.test/api/admin{path}")
        assert session.request.call_args.kwargs.get("json") == body

    def test_empty_list_payloads(self):
        session = _session(_response(), _response(), _response())
        client = AdminClient("s", base_url="http://api.test", session=session)
        assert client.list_posts() == []
        assert client.list_trips() == []
        assert client.list_users() == []
