"""
REST clients for the TravelBuddy backend.

DealsClient covers the public deals endpoints used by the deals page,
AdminClient the back-office endpoints guarded by the x-admin-secret header.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import requests

import settings

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Non-2xx response or transport failure."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SessionExpiredError(ApiError):
    """The admin secret was rejected (HTTP 403)."""


class _BaseClient:
    def __init__(
        self,
        base_url: str = settings.API_URL,
        timeout: float = settings.API_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    def _check(self, response: requests.Response, url: str) -> None:
        if not response.ok:
            raise ApiError(f"HTTP {response.status_code}", status_code=response.status_code)

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            logger.warning(f"{method} {url} failed: {exc}")
            raise ApiError(str(exc)) from exc

        self._check(response, url)
        logger.info(f"{method} {url} -> {response.status_code}")
        if not response.content:
            return None
        return response.json()


class DealsClient(_BaseClient):
    """Public deals API."""

    def list_deals(
        self,
        business_type: Optional[str] = None,
        sort: Optional[str] = None,
        user_location: Optional[Tuple[float, float]] = None,
        last_visit_ms: Optional[int] = None,
    ) -> List[Dict]:
        params: Dict[str, Any] = {"isActive": "true", "_t": int(time.time() * 1000)}
        if business_type and business_type != "all":
            params["businessType"] = business_type
        if sort:
            params["sort"] = sort
        if user_location:
            params["lat"], params["lng"] = user_location
        if last_visit_ms:
            params["lastVisit"] = last_visit_ms

        data = self._request("GET", "/api/deals", params=params)
        # NOTE: older backends answer with a bare list, newer ones wrap it as {deals, newDealsCount}
        if isinstance(data, dict):
            return data.get("deals", [])
        return data or []

    def view_deal(self, deal_id: str) -> None:
        self._request("POST", f"/api/deals/{deal_id}/view")

    def claim_deal(self, deal_id: str, user_id: Optional[str] = None) -> None:
        self._request("POST", f"/api/deals/{deal_id}/claim", json={"userId": user_id})


class AdminClient(_BaseClient):
    """Back-office API under /api/admin."""

    def __init__(self, admin_secret: str, **kwargs):
        super().__init__(**kwargs)
        self.admin_secret = admin_secret

    def _headers(self) -> Dict[str, str]:
        headers = super()._headers()
        headers["x-admin-secret"] = self.admin_secret
        return headers

    def _check(self, response: requests.Response, url: str) -> None:
        if response.status_code == 403:
            logger.warning(f"Admin secret rejected by {url}")
            raise SessionExpiredError("Session expired. Please login again.", status_code=403)
        super()._check(response, url)

    def _admin(self, method: str, endpoint: str, **kwargs) -> Any:
        return self._request(method, f"/api/admin{endpoint}", **kwargs)

    # -- loaders ------------------------------------------------------------

    def get_dashboard(self) -> Dict:
        return self._admin("GET", "/dashboard")

    def get_analytics(self) -> Dict:
        return self._admin("GET", "/analytics")

    def list_users(self, search: str = "") -> List[Dict]:
        data = self._admin("GET", "/users", params={"search": search})
        return (data or {}).get("users", [])

    def list_posts(self) -> List[Dict]:
        return self._admin("GET", "/posts/all") or []

    def list_pending_businesses(self) -> List[Dict]:
        return self._admin("GET", "/businesses/pending") or []

    def list_deals(self) -> List[Dict]:
        return self._admin("GET", "/deals") or []

    def list_events(self) -> List[Dict]:
        return self._admin("GET", "/events") or []

    def list_trips(self) -> List[Dict]:
        return self._admin("GET", "/trips") or []

    # -- mutations ----------------------------------------------------------

    def change_tier(self, user_id: str, tier: str) -> None:
        self._admin("PUT", f"/users/{user_id}/tier", json={"tier": tier})

    def delete_user(self, user_id: str) -> None:
        self._admin("DELETE", f"/users/{user_id}")

    def bulk_update_roles(self, user_ids: List[str], role: str) -> None:
        self._admin("PUT", "/users/bulk-role", json={"userIds": list(user_ids), "role": role})

    def moderate_post(self, post_id: str, status: str) -> None:
        self._admin("PUT", f"/posts/{post_id}/moderate", json={"status": status})

    def delete_post(self, post_id: str) -> None:
        self._admin("DELETE", f"/posts/{post_id}")

    def toggle_deal(self, deal_id: str) -> None:
        self._admin("PUT", f"/deals/{deal_id}/toggle")

    def approve_business(self, business_id: str, business_type: str) -> None:
        self._admin("PUT", f"/businesses/{business_id}/approve", json={"type": business_type})
