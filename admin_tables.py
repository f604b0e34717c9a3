import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import settings
from api_client import AdminClient
from data_table import BulkAction, Column, DataTable
from deal_ranking import parse_timestamp


# NOTE: Column layouts and actions for each admin tab. The table only dispatches, every
# mutation goes through AdminActions -> AdminClient and the tab is re-fetched afterwards.

logger = logging.getLogger(__name__)


def format_date(value: Any) -> str:
    ts = parse_timestamp(value)
    return ts.strftime("%m/%d/%Y") if ts is not None else ""


def truncate(value: Any, length: int = 50) -> str:
    text = "" if value is None else str(value)
    return text if len(text) <= length else text[:length] + "..."


def _full_name(_, row: Mapping) -> str:
    return " ".join(part for part in (row.get("firstName"), row.get("lastName")) if part)


def _author_name(value: Any, _) -> str:
    if isinstance(value, Mapping) and value.get("firstName"):
        return value["firstName"]
    return "Unknown"


def _like_count(value: Any, _) -> int:
    return len(value) if isinstance(value, (list, tuple)) else 0


USER_COLUMNS = [
    Column("firstName", "Name", render=_full_name),
    Column("email", "Email"),
    Column("tier", "Tier"),
    Column("role", "Role"),
    Column("createdAt", "Joined", render=lambda value, _: format_date(value)),
]

POST_COLUMNS = [
    Column("content", "Content", render=lambda value, _: truncate(value)),
    Column("author", "Author", render=_author_name),
    Column("likes", "Likes", render=_like_count),
    Column("status", "Status", render=lambda value, _: value or "pending"),
    Column("createdAt", "Created", render=lambda value, _: format_date(value)),
]

DEAL_COLUMNS = [
    Column("title", "Title"),
    Column("businessName", "Business"),
    Column("businessType", "Type"),
    Column("discount", "Discount", sortable=False),
    Column("views", "Views"),
    Column("claims", "Claims"),
    Column("isActive", "Status", render=lambda value, _: "Active" if value else "Inactive"),
    Column("validUntil", "Valid Until", render=lambda value, _: format_date(value)),
]

BUSINESS_COLUMNS = [
    Column("businessName", "Business"),
    Column("businessType", "Type"),
    Column("email", "Email"),
    Column("businessAddress", "Address", sortable=False),
    Column("createdAt", "Submitted", render=lambda value, _: format_date(value)),
]

EVENT_COLUMNS = [
    Column("title", "Title"),
    Column("category", "Category"),
    Column("location", "Location", sortable=False, render=lambda value, _: truncate(value, 40)),
    Column("startDate", "Starts", render=lambda value, _: format_date(value)),
]

TRIP_COLUMNS = [
    Column("tripTitle", "Trip"),
    Column("destination", "Destination"),
    Column("duration", "Duration"),
    Column("createdAt", "Created", render=lambda value, _: format_date(value)),
]

TAB_COLUMNS: Dict[str, List[Column]] = {
    "users": USER_COLUMNS,
    "posts": POST_COLUMNS,
    "deals": DEAL_COLUMNS,
    "businesses": BUSINESS_COLUMNS,
    "events": EVENT_COLUMNS,
    "trips": TRIP_COLUMNS,
}

ROW_ACTIONS: Dict[str, Tuple[Tuple[str, str], ...]] = {
    "users": (("Set free tier", "tier:free"), ("Set premium tier", "tier:premium"), ("Delete", "delete")),
    "posts": (("Approve", "approve"), ("Reject", "reject"), ("Delete", "delete")),
    "deals": (("Toggle active", "toggle"),),
    "businesses": (("Approve", "approve"),),
}

BULK_ACTIONS: Dict[str, List[BulkAction]] = {
    "users": [
        BulkAction("Set free tier", "tier:free"),
        BulkAction("Set premium tier", "tier:premium"),
        BulkAction("Make moderator", "role:moderator"),
        BulkAction("Make user", "role:user"),
        BulkAction("Delete", "delete"),
    ],
    "posts": [BulkAction("Approve", "approve"), BulkAction("Reject", "reject"), BulkAction("Delete", "delete")],
    "deals": [BulkAction("Toggle active", "toggle")],
    "businesses": [BulkAction("Approve", "approve")],
}


class AdminActions:
    """Maps table actions onto AdminClient calls, then reloads the tab."""

    def __init__(self, client: AdminClient, reload: Callable[[str], Any]):
        self.client = client
        self.reload = reload

    def row_action(self, tab: str, action: str, row: Mapping) -> None:
        self._apply(tab, action, row)
        self.reload(tab)

    def bulk_action(self, tab: str, action: str, rows: Sequence[Mapping]) -> None:
        if tab == "users" and action.startswith("role:"):
            self.client.bulk_update_roles([row["_id"] for row in rows], action.split(":", 1)[1])
        else:
            for row in rows:
                self._apply(tab, action, row)
        logger.info(f"Applied {action!r} to {len(rows)} {tab}")
        self.reload(tab)

    def _apply(self, tab: str, action: str, row: Mapping) -> None:
        key = row["_id"]
        if tab == "users":
            if action.startswith("tier:"):
                self.client.change_tier(key, action.split(":", 1)[1])
                return
            if action.startswith("role:"):
                self.client.bulk_update_roles([key], action.split(":", 1)[1])
                return
            if action == "delete":
                self.client.delete_user(key)
                return
        elif tab == "posts":
            if action in ("approve", "reject"):
                self.client.moderate_post(key, "approved" if action == "approve" else "rejected")
                return
            if action == "delete":
                self.client.delete_post(key)
                return
        elif tab == "deals":
            if action == "toggle":
                self.client.toggle_deal(key)
                return
        elif tab == "businesses":
            if action == "approve":
                self.client.approve_business(key, row.get("businessType") or "business")
                return
        raise ValueError(f"Unsupported action {action!r} for tab {tab!r}")


def build_table(
    tab: str,
    rows: Sequence[Mapping],
    actions: Optional[AdminActions] = None,
    page_size: int = settings.TABLE_PAGE_SIZE,
) -> DataTable:
    """DataTable for an admin tab, wired to AdminActions when given."""
    table = DataTable(
        rows,
        TAB_COLUMNS[tab],
        page_size=page_size,
        bulk_actions=BULK_ACTIONS.get(tab) if actions else None,
    )
    if actions is not None:
        def _on_bulk(action, keys):
            wanted = set(keys)
            actions.bulk_action(tab, action, [row for row in table.rows if table.key_of(row) in wanted])

        table.on_bulk_action = _on_bulk
        table.on_row_action = lambda action, row: actions.row_action(tab, action, row)
    return table
