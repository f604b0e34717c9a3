import pytest

from data_table import (
    ASC,
    DESC,
    BulkAction,
    Column,
    DataTable,
    compare_values,
    format_csv_value,
    save_export,
)


COLUMNS = [
    Column("name", "Name"),
    Column("city", "City"),
    Column("score", "Score"),
    Column("notes", "Notes", sortable=False),
]


def make_rows(count):
    return [{"_id": i, "name": f"user{i:03d}", "city": "Kandy" if i % 2 else "Galle", "score": i % 3} for i in range(count)]


def keys(rows):
    return [row["_id"] for row in rows]


class TestSorting:
    def test_header_click_toggles_order(self):
        table = DataTable(make_rows(5), COLUMNS)
        table.sort_by("score")
        assert (table.sort_key, table.sort_order) == ("score", ASC)
        assert table.sort_indicator("score") == "↑"
        table.sort_by("score")
        assert table.sort_order == DESC
        assert table.sort_indicator("score") == "↓"
        assert table.sort_indicator("name") == ""

    def test_new_column_starts_ascending(self):
        table = DataTable(make_rows(5), COLUMNS)
        table.sort_by("score")
        table.sort_by("score")
        table.sort_by("city")
        assert (table.sort_key, table.sort_order) == ("city", ASC)

    def test_non_sortable_column_is_ignored(self):
        table = DataTable(make_rows(5), COLUMNS)
        table.sort_by("notes")
        assert table.sort_key is None

    def test_unknown_column_raises(self):
        table = DataTable(make_rows(5), COLUMNS)
        with pytest.raises(KeyError):
            table.sort_by("missing")

    def test_sort_is_stable_in_both_directions(self):
        table = DataTable(make_rows(9), COLUMNS)
        table.sort_by("city")
        assert keys(table.sorted_rows) == [0, 2, 4, 6, 8, 1, 3, 5, 7]
        table.sort_by("city")
        assert keys(table.sorted_rows) == [1, 3, 5, 7, 0, 2, 4, 6, 8]

    def test_missing_values_sort_last_in_both_directions(self):
        rows = [{"_id": 1, "score": 3}, {"_id": 2}, {"_id": 3, "score": 1}, {"_id": 4, "score": None}]
        table = DataTable(rows, COLUMNS)
        table.sort_by("score")
        assert keys(table.sorted_rows) == [3, 1, 2, 4]
        table.sort_by("score")
        assert keys(table.sorted_rows) == [1, 3, 2, 4]

    def test_compare_values(self):
        assert compare_values(1, 2) == -1
        assert compare_values("b", "a") == 1
        assert compare_values(None, 5) == 0
        assert compare_values(1, "1") == 0
        assert compare_values(2, "10") == 1


class TestPagination:
    @pytest.mark.parametrize("count", [0, 1, 9, 10, 11, 25, 101])
    @pytest.mark.parametrize("page_size", [10, 25, 50, 100])
    def test_every_row_shown_exactly_once(self, count, page_size):
        table = DataTable(make_rows(count), COLUMNS, page_size=page_size)
        seen = []
        for page in range(1, table.total_pages + 1):
            assert table.go_to_page(page) == page
            assert 1 <= table.current_page <= max(1, -(-count // page_size))
            seen.extend(keys(table.page_rows))
        assert sorted(seen) == list(range(count))

    def test_page_is_clamped(self):
        table = DataTable(make_rows(30), COLUMNS, page_size=10)
        assert table.go_to_page(99) == 3
        assert table.go_to_page(-4) == 1
        assert table.previous_page() == 1
        table.go_to_page(3)
        assert table.next_page() == 3

    def test_showing_range(self):
        table = DataTable(make_rows(30), COLUMNS, page_size=25)
        assert table.showing_range() == (1, 25, 30)
        table.next_page()
        assert table.showing_range() == (26, 30, 30)

    def test_empty_table(self):
        table = DataTable([], COLUMNS)
        assert table.total_pages == 1
        assert table.current_page == 1
        assert table.page_rows == []
        assert table.showing_range() == (0, 0, 0)
        table.toggle_all()
        assert table.selected_keys == []

    def test_changing_page_size_returns_to_first_page(self):
        table = DataTable(make_rows(60), COLUMNS, page_size=10)
        table.go_to_page(4)
        table.set_page_size(50)
        assert table.current_page == 1
        assert len(table.page_rows) == 50

    def test_rejects_unsupported_page_size(self):
        table = DataTable(make_rows(3), COLUMNS)
        with pytest.raises(ValueError):
            table.set_page_size(7)
        with pytest.raises(ValueError):
            DataTable([], COLUMNS, page_size=0)


class TestSelection:
    def test_toggle_all_twice_returns_to_empty(self):
        table = DataTable(make_rows(30), COLUMNS, page_size=10)
        table.toggle_all()
        assert table.selected_keys == list(range(10))
        assert table.all_page_selected
        table.toggle_all()
        assert table.selected_keys == []

    def test_selection_persists_across_pages(self):
        table = DataTable(make_rows(30), COLUMNS, page_size=10)
        table.toggle_row(3)
        table.next_page()
        table.toggle_all()
        assert table.is_selected(3)
        assert len(table.selected_keys) == 11

    def test_toggle_all_completes_partial_page(self):
        table = DataTable(make_rows(5), COLUMNS)
        table.toggle_row(1)
        table.toggle_all()
        assert sorted(table.selected_keys) == [0, 1, 2, 3, 4]

    def test_toggle_row(self):
        table = DataTable(make_rows(3), COLUMNS)
        assert table.toggle_row(2) is True
        assert table.toggle_row(2) is False
        assert not table.is_selected(2)

    def test_set_rows_drops_missing_selections_and_clamps_page(self):
        table = DataTable(make_rows(30), COLUMNS, page_size=10)
        table.go_to_page(3)
        table.toggle_all()
        table.toggle_row(0)
        table.set_rows(make_rows(5))
        assert table.selected_keys == [0]
        assert table.current_page == 1


class TestActions:
    def test_bulk_action_dispatches_selected_keys_then_clears(self):
        calls = []
        table = DataTable(
            make_rows(5),
            COLUMNS,
            bulk_actions=[BulkAction("Delete", "delete")],
            on_bulk_action=lambda action, selected: calls.append((action, selected)),
        )
        assert not table.show_bulk_actions
        table.toggle_row(4)
        table.toggle_row(1)
        assert table.show_bulk_actions

        assert table.apply_bulk_action("delete") is True
        assert calls == [("delete", [4, 1])]
        assert table.selected_keys == []

    def test_bulk_action_without_selection_is_noop(self):
        calls = []
        table = DataTable(make_rows(3), COLUMNS, bulk_actions=[BulkAction("Delete", "delete")],
                          on_bulk_action=lambda *args: calls.append(args))
        assert table.apply_bulk_action("delete") is False
        assert calls == []

    def test_unknown_bulk_action_raises(self):
        table = DataTable(make_rows(3), COLUMNS, bulk_actions=[BulkAction("Delete", "delete")])
        table.toggle_row(0)
        with pytest.raises(ValueError):
            table.apply_bulk_action("archive")
        assert table.selected_keys == [0]

    def test_row_action_is_forwarded(self):
        calls = []
        rows = make_rows(2)
        table = DataTable(rows, COLUMNS, on_row_action=lambda action, row: calls.append((action, row)) or "done")
        assert table.row_action("approve", rows[1]) == "done"
        assert calls == [("approve", rows[1])]
        assert DataTable(rows, COLUMNS).row_action("approve", rows[0]) is None


class TestRendering:
    def test_render_uses_column_renderer(self):
        columns = [Column("name", "Name", render=lambda value, row: value.upper()), Column("missing", "Missing")]
        table = DataTable([{"_id": 1, "name": "ana"}], columns)
        assert table.render_page() == [["ANA", ""]]

    def test_hidden_columns_are_not_rendered(self):
        table = DataTable(make_rows(2), COLUMNS)
        assert table.toggle_column("notes") is False
        assert not table.is_visible("notes")
        assert [column.key for column in table.visible_columns] == ["name", "city", "score"]
        assert list(table.page_frame().columns) == ["Name", "City", "Score"]
        assert table.toggle_column("notes") is True

    def test_attribute_rows(self):
        class Row:
            def __init__(self, _id, name):
                self._id = _id
                self.name = name

        table = DataTable([Row(2, "b"), Row(1, "a")], [Column("name", "Name")])
        table.sort_by("name")
        assert [table.key_of(row) for row in table.sorted_rows] == [1, 2]


class TestCsvExport:
    def test_round_trip_with_visible_columns(self):
        table = DataTable(make_rows(30), COLUMNS, page_size=10, clock=lambda: 1700000000.5)
        table.set_visible_columns(["name", "score"])
        table.sort_by("name")
        table.sort_by("name")

        export = table.export_csv()
        assert export.filename == "export-1700000000500.csv"
        assert export.mime == "text/csv"

        lines = export.content.split("\n")
        assert lines[0].split(",") == ["Name", "Score"]
        assert len(lines) == 31
        assert lines[1].split(",") == ["user029", "2"]
        assert lines[-1].split(",") == ["user000", "0"]

    def test_values_are_written_raw(self):
        columns = [Column("flag", "Flag"), Column("meta", "Meta"), Column("missing", "Missing")]
        table = DataTable([{"_id": 1, "flag": True, "meta": {"a": 1}}], columns)
        assert table.export_csv().content.split("\n")[1] == 'true,{"a":1},'

    def test_format_csv_value(self):
        assert format_csv_value(None) == ""
        assert format_csv_value(False) == "false"
        assert format_csv_value([1, 2]) == "[1,2]"
        assert format_csv_value(3.5) == "3.5"

    def test_empty_table_exports_header_only(self):
        assert DataTable([], COLUMNS).export_csv().content == "Name,City,Score,Notes"

    def test_save_export(self, tmp_path):
        export = DataTable(make_rows(2), COLUMNS, clock=lambda: 1).export_csv()
        path = save_export(export, tmp_path / "exports")
        assert path.name == "export-1000.csv"
        assert path.read_text(encoding="utf-8") == export.content
