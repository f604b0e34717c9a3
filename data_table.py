import json
import logging
import time
from dataclasses import dataclass
from functools import cmp_to_key
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, NamedTuple, Optional, Sequence, Tuple, TypeVar

import pandas as pd


# NOTE: The table never mutates anything itself. Bulk and row actions are handed back to the caller,
# which does the API call and then passes the re-fetched rows in via set_rows().

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT")

PAGE_SIZE_OPTIONS = (10, 25, 50, 100)
ASC = "asc"
DESC = "desc"


@dataclass
class Column(Generic[RowT]):
    """How one field is labelled, sorted and rendered across all rows."""

    key: str
    label: str
    sortable: bool = True
    render: Optional[Callable[[Any, RowT], Any]] = None


@dataclass(frozen=True)
class BulkAction:
    label: str
    value: str


class CsvExport(NamedTuple):
    filename: str
    content: str
    mime: str = "text/csv"


def field_value(row: Any, key: str) -> Any:
    """Value of `key` on a mapping row or an attribute-style row; None when absent."""
    if isinstance(row, Mapping):
        return row.get(key)
    return getattr(row, key, None)


def compare_values(a: Any, b: Any) -> int:
    """
    Plain less-than / greater-than comparison, no coercion by type.

    Missing values compare equal to everything. That is not a total order, so
    DataTable sorts rows missing the value apart from the rest.
    Values of unrelated types fall back to comparing their string forms.
    """
    if a is None or b is None:
        return 0
    try:
        if a < b:
            return -1
        if a > b:
            return 1
        return 0
    except TypeError:
        sa, sb = str(a), str(b)
        return (sa > sb) - (sa < sb)


def format_csv_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


class DataTable(Generic[RowT]):
    """
    Client-side table state: sort, pagination, selection, column visibility and CSV export.

    Args:
        rows: the records to display
        columns: Column descriptors, in display order
        row_key: field holding each row's unique key
        page_size: initial rows per page
        bulk_actions: actions offered once rows are selected
        on_bulk_action: called with (action value, selected keys)
        on_row_action: called with (action, row)
        clock: returns epoch seconds, used to stamp export filenames
    """

    def __init__(
        self,
        rows: Iterable[RowT],
        columns: Sequence[Column],
        row_key: str = "_id",
        page_size: int = 25,
        bulk_actions: Optional[Sequence[BulkAction]] = None,
        on_bulk_action: Optional[Callable[[str, List[Any]], Any]] = None,
        on_row_action: Optional[Callable[[str, RowT], Any]] = None,
        clock: Callable[[], float] = time.time,
    ):
        if page_size <= 0:
            raise ValueError(f"page_size must be positive, got {page_size}")

        self.rows: List[RowT] = list(rows)
        self.columns: List[Column] = list(columns)
        self.row_key = row_key
        self.bulk_actions: List[BulkAction] = list(bulk_actions or [])
        self.on_bulk_action = on_bulk_action
        self.on_row_action = on_row_action
        self._clock = clock

        self.sort_key: Optional[str] = None
        self.sort_order = ASC
        self.page_size = page_size
        self._page = 1
        # dict keeps selection order, values unused
        self._selected: Dict[Any, None] = {}
        self._visible = {column.key for column in self.columns}

    # -- rows ---------------------------------------------------------------

    def set_rows(self, rows: Iterable[RowT]) -> None:
        """Swap in a re-fetched row set, dropping selections whose rows are gone."""
        self.rows = list(rows)
        present = {self.key_of(row) for row in self.rows}
        self._selected = {key: None for key in self._selected if key in present}
        self._page = self.current_page

    def key_of(self, row: RowT) -> Any:
        return field_value(row, self.row_key)

    def column(self, key: str) -> Column:
        for column in self.columns:
            if column.key == key:
                return column
        raise KeyError(f"Unknown column {key!r}")

    # -- sorting ------------------------------------------------------------

    def sort_by(self, key: str) -> None:
        """Header click: same column flips the order, a new column starts ascending."""
        column = self.column(key)
        if not column.sortable:
            logger.debug(f"Ignoring sort on non-sortable column {key!r}")
            return
        if self.sort_key == key:
            self.sort_order = DESC if self.sort_order == ASC else ASC
        else:
            self.sort_key = key
            self.sort_order = ASC

    def sort_indicator(self, key: str) -> str:
        if self.sort_key != key:
            return ""
        return "↑" if self.sort_order == ASC else "↓"

    @property
    def sorted_rows(self) -> List[RowT]:
        if not self.sort_key:
            return list(self.rows)
        key = self.sort_key
        sign = 1 if self.sort_order == ASC else -1
        present = [row for row in self.rows if field_value(row, key) is not None]
        missing = [row for row in self.rows if field_value(row, key) is None]
        # sorted() is stable, equal values keep their incoming order in both directions.
        # NOTE: rows missing the value go last in either direction, in incoming order.
        return sorted(
            present,
            key=cmp_to_key(lambda a, b: sign * compare_values(field_value(a, key), field_value(b, key))),
        ) + missing

    # -- pagination ---------------------------------------------------------

    @property
    def total_pages(self) -> int:
        return max(1, -(-len(self.rows) // self.page_size))

    @property
    def current_page(self) -> int:
        return min(max(1, self._page), self.total_pages)

    def go_to_page(self, page: int) -> int:
        self._page = min(max(1, int(page)), self.total_pages)
        return self._page

    def next_page(self) -> int:
        return self.go_to_page(self.current_page + 1)

    def previous_page(self) -> int:
        return self.go_to_page(self.current_page - 1)

    def set_page_size(self, page_size: int) -> None:
        if page_size not in PAGE_SIZE_OPTIONS:
            raise ValueError(f"page_size must be one of {PAGE_SIZE_OPTIONS}, got {page_size}")
        self.page_size = page_size
        self._page = 1

    @property
    def page_rows(self) -> List[RowT]:
        start = (self.current_page - 1) * self.page_size
        return self.sorted_rows[start:start + self.page_size]

    def showing_range(self) -> Tuple[int, int, int]:
        """(first, last, total) for the "Showing X to Y of Z" line, 1-based."""
        total = len(self.rows)
        if not total:
            return 0, 0, 0
        start = (self.current_page - 1) * self.page_size
        return start + 1, min(start + self.page_size, total), total

    # -- selection ----------------------------------------------------------

    @property
    def selected_keys(self) -> List[Any]:
        return list(self._selected)

    def is_selected(self, key: Any) -> bool:
        return key in self._selected

    def toggle_row(self, key: Any) -> bool:
        if key in self._selected:
            del self._selected[key]
            return False
        self._selected[key] = None
        return True

    @property
    def all_page_selected(self) -> bool:
        keys = [self.key_of(row) for row in self.page_rows]
        return bool(keys) and all(key in self._selected for key in keys)

    def toggle_all(self) -> None:
        """
        Header checkbox. Selects every row on the current page, or clears the
        whole selection when the page is already fully selected. Selections on
        other pages are kept while adding.
        """
        if self.all_page_selected or not self.page_rows:
            self._selected.clear()
            return
        for row in self.page_rows:
            self._selected[self.key_of(row)] = None

    def clear_selection(self) -> None:
        self._selected.clear()

    # -- actions ------------------------------------------------------------

    @property
    def show_bulk_actions(self) -> bool:
        return bool(self.bulk_actions) and bool(self._selected)

    def apply_bulk_action(self, value: str) -> bool:
        """Dispatch a bulk action for the selected keys, then clear the selection."""
        if not self._selected:
            return False
        if value not in {action.value for action in self.bulk_actions}:
            raise ValueError(f"Unknown bulk action {value!r}")

        keys = self.selected_keys
        if self.on_bulk_action:
            self.on_bulk_action(value, keys)
        logger.info(f"Bulk action {value!r} dispatched for {len(keys)} rows")
        self._selected.clear()
        return True

    def row_action(self, action: str, row: RowT) -> Any:
        if self.on_row_action:
            return self.on_row_action(action, row)
        return None

    # -- columns ------------------------------------------------------------

    @property
    def visible_columns(self) -> List[Column]:
        return [column for column in self.columns if column.key in self._visible]

    def is_visible(self, key: str) -> bool:
        return key in self._visible

    def toggle_column(self, key: str) -> bool:
        self.column(key)
        if key in self._visible:
            self._visible.discard(key)
            return False
        self._visible.add(key)
        return True

    def set_visible_columns(self, keys: Iterable[str]) -> None:
        keys = set(keys)
        for key in keys:
            self.column(key)
        self._visible = keys

    # -- rendering ----------------------------------------------------------

    def cell(self, row: RowT, column: Column) -> Any:
        value = field_value(row, column.key)
        if column.render:
            return column.render(value, row)
        return "" if value is None else value

    def render_page(self) -> List[List[Any]]:
        columns = self.visible_columns
        return [[self.cell(row, column) for column in columns] for row in self.page_rows]

    def page_frame(self) -> pd.DataFrame:
        """Current page, rendered, as a DataFrame for st.dataframe."""
        labels = [column.label for column in self.visible_columns]
        return pd.DataFrame(self.render_page(), columns=labels)

    # -- export -------------------------------------------------------------

    def export_csv(self) -> CsvExport:
        """
        All sorted rows (not just the current page) restricted to visible columns.

        Raw field values are written, objects as JSON. Values are joined with
        commas and never quoted, so embedded commas or quotes are not escaped.
        """
        columns = self.visible_columns
        lines = [",".join(column.label for column in columns)]
        for row in self.sorted_rows:
            lines.append(",".join(format_csv_value(field_value(row, column.key)) for column in columns))

        filename = f"export-{int(self._clock() * 1000)}.csv"
        logger.info(f"Exported {len(lines) - 1} rows to {filename}")
        return CsvExport(filename=filename, content="\n".join(lines))


def save_export(export: CsvExport, output_dir: str = "output") -> Path:
    """Write an export to disk, for hosts without a browser download."""
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)
    csv_path = output_path / export.filename
    csv_path.write_text(export.content, encoding="utf-8")
    logger.info(f"Saved CSV export: {csv_path}")
    return csv_path
