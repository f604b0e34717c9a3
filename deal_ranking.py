import logging
import math
import re
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd


# NOTE: Everything in here runs on deals that were already fetched from the API, nothing is queried.
# NOTE: Bad numbers and bad dates never raise, they become NaN and NaN always sorts last.

logger = logging.getLogger(__name__)

ALL_CATEGORIES = "all"
SORT_KEYS = ("trending", "discount", "newest", "expiring", "distance")
EARTH_RADIUS_KM = 6371.0

# sort key -> (ranking column, ascending)
_SORT_COLUMNS = {
    "trending": ("trending", False),
    "discount": ("discount", False),
    "newest": ("created", False),
    "expiring": ("valid_until", True),
    "distance": ("distance", True),
}

_PERCENT_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*%")
_OBJECT_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")


@dataclass(frozen=True)
class FilterOptions:
    """Search, category and sort criteria for the deals screen."""

    search_term: str = ""
    category: str = ALL_CATEGORIES
    sort_key: Optional[str] = None
    user_location: Optional[Tuple[float, float]] = None


def _number(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return np.nan
    try:
        num = float(value)
    except (TypeError, ValueError):
        return np.nan
    return num if math.isfinite(num) else np.nan


def _text(value: Any) -> str:
    return "" if value is None else str(value)


def _location(deal: Mapping) -> Mapping:
    location = deal.get("location")
    return location if isinstance(location, Mapping) else {}


def category_of(deal: Mapping) -> str:
    """Category tag of a deal, falling back to its business type."""
    value = deal.get("category") or deal.get("businessType")
    return str(value) if value else ""


def category_options(deals: Iterable[Mapping]) -> List[str]:
    """Sorted distinct categories, prefixed with the 'all' wildcard."""
    categories = sorted({category_of(deal) for deal in deals} - {""})
    return [ALL_CATEGORIES] + categories


def trending_score(deal: Mapping) -> float:
    """views + 2 * claims, missing counters count as zero"""
    views = _number(deal.get("views"))
    claims = _number(deal.get("claims"))
    return (0.0 if np.isnan(views) else views) + 2 * (0.0 if np.isnan(claims) else claims)


def parse_discount_percent(discount: Any) -> Optional[float]:
    """
    Percentage carried by a discount field.

    Handles labels like "35% OFF" or "UP TO 50% OFF", bare numbers, and
    discount objects ({"type": "percentage", "value": 20, "label": ...}).
    Fixed-amount discounts and labels without a percentage return None.
    """
    if isinstance(discount, Mapping):
        if str(discount.get("type", "")).lower() == "percentage":
            value = _number(discount.get("value"))
            return None if np.isnan(value) else value
        discount = discount.get("label")

    if isinstance(discount, (int, float)) and not isinstance(discount, bool):
        value = _number(discount)
        return None if np.isnan(value) else value

    if not discount:
        return None

    match = _PERCENT_PATTERN.search(str(discount))
    return float(match.group(1)) if match else None


def parse_timestamp(value: Any) -> Optional[pd.Timestamp]:
    """UTC timestamp for ISO strings, datetimes or epoch milliseconds; None when unparsable."""
    if value is None or isinstance(value, bool):
        return None
    if not isinstance(value, (str, int, float, datetime, np.datetime64)):
        return None
    try:
        if isinstance(value, (int, float)):
            if not math.isfinite(value):
                return None
            ts = pd.to_datetime(value, unit="ms", utc=True, errors="coerce")
        else:
            ts = pd.to_datetime(value, utc=True, errors="coerce")
    except (TypeError, ValueError, OverflowError):
        return None
    return None if pd.isna(ts) else ts


def object_id_timestamp(value: Any) -> Optional[pd.Timestamp]:
    """Creation time embedded in the first four bytes of a MongoDB ObjectId."""
    if not isinstance(value, str) or not _OBJECT_ID_PATTERN.match(value):
        return None
    return pd.Timestamp(int(value[:8], 16), unit="s", tz="UTC")


def created_at(deal: Mapping) -> Optional[pd.Timestamp]:
    """
    Creation time of a deal.

    Falls back to the ObjectId in `_id` when `createdAt` is absent or
    unparsable. That fallback is a proxy the backend happens to allow,
    not a real creation field, so deals with ids from other stores just
    sort last under "newest".
    """
    ts = parse_timestamp(deal.get("createdAt"))
    if ts is None:
        ts = object_id_timestamp(deal.get("_id"))
    return ts


def _epoch(ts: Optional[pd.Timestamp]) -> float:
    return np.nan if ts is None else ts.timestamp()


def haversine_km(lat1, lng1, lat2, lng2):
    """Great-circle distance in km, vectorised over numpy arrays."""
    lat1, lng1, lat2, lng2 = map(np.radians, (lat1, lng1, lat2, lng2))
    a = np.sin((lat2 - lat1) / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin((lng2 - lng1) / 2) ** 2
    return 2 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(a))


def _distance_keys(deals: Sequence[Mapping], user_location: Optional[Tuple[float, float]]) -> np.ndarray:
    keys = np.array([_number(deal.get("distance")) for deal in deals], dtype=float)
    if user_location is None or not len(deals):
        return keys

    lats = np.array([_number(_location(deal).get("lat")) for deal in deals], dtype=float)
    lngs = np.array([_number(_location(deal).get("lng")) for deal in deals], dtype=float)
    computed = haversine_km(float(user_location[0]), float(user_location[1]), lats, lngs)
    return np.where(np.isnan(keys), computed, keys)


def annotate_distances(deals: Iterable[Mapping], user_location: Tuple[float, float]) -> List[Dict]:
    """Copies of the deals with a `distance` (km) filled in where a location is known."""
    deals = list(deals)
    keys = _distance_keys(deals, user_location)
    annotated = []
    for deal, distance in zip(deals, keys):
        copy = dict(deal)
        if not np.isnan(distance):
            copy["distance"] = round(float(distance), 2)
        annotated.append(copy)
    return annotated


def _ranking_frame(deals: Sequence[Mapping], user_location: Optional[Tuple[float, float]]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "title": [_text(deal.get("title")) for deal in deals],
            "business": [_text(deal.get("businessName")) for deal in deals],
            "description": [_text(deal.get("description")) for deal in deals],
            "category": [category_of(deal) for deal in deals],
            "trending": np.array([trending_score(deal) for deal in deals], dtype=float),
            "discount": np.array(
                [_number(parse_discount_percent(deal.get("discount"))) for deal in deals], dtype=float
            ),
            "created": np.array([_epoch(created_at(deal)) for deal in deals], dtype=float),
            "valid_until": np.array(
                [_epoch(parse_timestamp(deal.get("validUntil"))) for deal in deals], dtype=float
            ),
            "distance": _distance_keys(deals, user_location),
        },
        index=range(len(deals)),
    )


def filter_and_sort(deals: Iterable[Mapping], options: Optional[FilterOptions] = None, **overrides) -> List[Mapping]:
    """
    Search, filter and rank deals.

    Args:
        deals: deal records as returned by the API
        options: FilterOptions, individual fields can be overridden as keyword arguments

    Returns:
        A new list holding the same deal objects in ranked order. The input is never mutated.
    """
    options = replace(options or FilterOptions(), **overrides)
    if options.sort_key and options.sort_key not in _SORT_COLUMNS:
        raise ValueError(f"Unknown sort key {options.sort_key!r}, expected one of {SORT_KEYS}")

    deals = list(deals)
    if not deals:
        return []

    frame = _ranking_frame(deals, options.user_location)

    # Text search over title, business name and description
    if options.search_term:
        term = options.search_term
        mask = (
            frame["title"].str.contains(term, case=False, regex=False)
            | frame["business"].str.contains(term, case=False, regex=False)
            | frame["description"].str.contains(term, case=False, regex=False)
        )
        frame = frame[mask]

    if options.category and options.category != ALL_CATEGORIES:
        frame = frame[frame["category"] == options.category]

    if options.sort_key:
        column, ascending = _SORT_COLUMNS[options.sort_key]
        keys = frame[column] if ascending else -frame[column]
        # NOTE: mergesort keeps ties in their incoming order, NaN keys land at the end in incoming order too.
        order = keys.sort_values(kind="mergesort", na_position="last").index
    else:
        order = frame.index

    ranked = [deals[i] for i in order]
    logger.info(f"Filtered from {len(deals)} to {len(ranked)} deals (sort={options.sort_key or 'none'})")
    return ranked


def is_live(deal: Mapping, now: Any = None) -> bool:
    """Active flag not switched off and `now` inside the optional startsAt/endsAt window."""
    if deal.get("isActive") is False:
        return False
    now_ts = parse_timestamp(now) if now is not None else pd.Timestamp.now(tz="UTC")
    starts = parse_timestamp(deal.get("startsAt"))
    ends = parse_timestamp(deal.get("endsAt"))
    if starts is not None and starts > now_ts:
        return False
    if ends is not None and ends < now_ts:
        return False
    return True


def live_deals(deals: Iterable[Mapping], now: Any = None) -> List[Mapping]:
    return [deal for deal in deals if is_live(deal, now)]


def count_new_deals(deals: Iterable[Mapping], last_visit_ms: Optional[float]) -> int:
    """Deals created after the previous visit; zero on a first visit."""
    last_visit = parse_timestamp(last_visit_ms)
    if last_visit is None:
        return 0
    count = 0
    for deal in deals:
        ts = created_at(deal)
        if ts is not None and ts > last_visit:
            count += 1
    return count


def recommended_slice(
    ranked: Sequence[Mapping],
    featured: Optional[Mapping] = None,
    limit: int = 6,
    row_key: str = "_id",
) -> List[Mapping]:
    """Top of the ranking, without the featured deal."""
    featured_key = featured.get(row_key) if featured else None

    def _is_featured(deal):
        return deal is featured or (featured_key is not None and deal.get(row_key) == featured_key)

    return [deal for deal in ranked if not _is_featured(deal)][:limit]


class FeaturedDealPicker:
    """
    Remembers the first ranked deal for the rest of the session.

    The pick is stored in a session mapping (st.session_state in the app) and
    is not recomputed when the filters change, only when clear() is called.
    """

    def __init__(self, state: Optional[MutableMapping] = None, key: str = "featured_deal"):
        self._state = state if state is not None else {}
        self._key = key

    @property
    def current(self) -> Optional[Mapping]:
        return self._state.get(self._key)

    def pick(self, ranked: Sequence[Mapping]) -> Optional[Mapping]:
        if self._key in self._state:
            return self._state[self._key]
        if not ranked:
            return None
        self._state[self._key] = ranked[0]
        return ranked[0]

    def clear(self) -> None:
        self._state.pop(self._key, None)
