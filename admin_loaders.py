import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

from api_client import AdminClient, ApiError, SessionExpiredError


# NOTE: One loader per admin tab, run when the tab is activated. The result is kept as a
# tagged state (Idle / Loading / Loaded / Failed) rather than separate loading and error flags.

logger = logging.getLogger(__name__)

ADMIN_TABS = ("dashboard", "analytics", "users", "posts", "businesses", "deals", "events", "trips")


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Loading:
    pass


@dataclass(frozen=True)
class Loaded:
    data: Any


@dataclass(frozen=True)
class Failed:
    error: str


LoadState = Union[Idle, Loading, Loaded, Failed]


class TabLoaders:
    """Registry of per-tab loaders and their last load state."""

    def __init__(
        self,
        loaders: Optional[Dict[str, Callable[[], Any]]] = None,
        on_session_expired: Optional[Callable[[], Any]] = None,
    ):
        self._loaders: Dict[str, Callable[[], Any]] = dict(loaders or {})
        self._states: Dict[str, LoadState] = {}
        self.on_session_expired = on_session_expired

    @property
    def tabs(self):
        return list(self._loaders)

    def register(self, tab: str, loader: Callable[[], Any]) -> None:
        self._loaders[tab] = loader

    def state(self, tab: str) -> LoadState:
        return self._states.get(tab, Idle())

    def activate(self, tab: str) -> LoadState:
        """Run the tab's loader and record the outcome."""
        if tab not in self._loaders:
            raise KeyError(f"No loader registered for tab {tab!r}")

        self._states[tab] = Loading()
        try:
            data = self._loaders[tab]()
        except SessionExpiredError as exc:
            self._states[tab] = Failed(str(exc))
            logger.warning(f"Loading {tab} failed, session expired")
            if self.on_session_expired:
                self.on_session_expired()
        except ApiError as exc:
            self._states[tab] = Failed(str(exc))
            logger.warning(f"Loading {tab} failed: {exc}")
        else:
            self._states[tab] = Loaded(data)
        return self._states[tab]

    def ensure_loaded(self, tab: str) -> LoadState:
        """Activate only if the tab has not been loaded yet."""
        state = self.state(tab)
        if isinstance(state, Idle):
            return self.activate(tab)
        return state

    def reset(self) -> None:
        self._states.clear()


def build_admin_loaders(
    client: AdminClient,
    user_search: Callable[[], str] = lambda: "",
    on_session_expired: Optional[Callable[[], Any]] = None,
) -> TabLoaders:
    return TabLoaders(
        {
            "dashboard": client.get_dashboard,
            "analytics": client.get_analytics,
            "users": lambda: client.list_users(user_search()),
            "posts": client.list_posts,
            "businesses": client.list_pending_businesses,
            "deals": client.list_deals,
            "events": client.list_events,
            "trips": client.list_trips,
        },
        on_session_expired=on_session_expired,
    )
