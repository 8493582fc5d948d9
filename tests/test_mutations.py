"""
写操作测试：新增/编辑/删除、批量操作事务、行内编辑、行操作回调、上传与 select2 选项
"""
import pytest

from gridkit.common.exceptions import ValidationError
from gridkit.grid.actions import parse_request
from gridkit.grid.callbacks import CallbackRegistry
from gridkit.grid.config import GridConfig
from gridkit.grid.data_grid import DataGrid
from gridkit.grid.mutations import substitute_query_parameters


class MemoryStorage:
    """记录保存请求的文件存储替身"""

    def __init__(self):
        self.saved = []

    def save(self, field, upload, settings):
        if not str(upload).endswith((".png", ".jpg")):
            raise ValidationError("unsupported file type")
        self.saved.append((field, upload, settings["upload_path"]))
        return f"stored-{upload}"


@pytest.fixture
def grid(people_db):
    config = GridConfig("t").columns(["name", "active"]).inline_editable(["name", "active"])
    return DataGrid(people_db, config)


# ============================================================================
# 新增 / 编辑 / 删除
# ============================================================================

def test_add_record_returns_new_id(grid, people_db):
    result = grid.handle("add_record", {"name": "  Carol  ", "active": "1"})
    assert result["success"] is True
    assert result["id"] == 3

    row = people_db.first("t", "id = ?", [3])
    assert row["name"] == "Carol"
    assert row["active"] == 1


def test_add_record_ignores_primary_key_and_unknown_fields(grid, people_db):
    result = grid.handle("add_record", {"data": {"id": 1, "name": "Dan", "active": 0, "nope": "x"}})
    assert result["success"] is True
    assert result["id"] == 3
    assert people_db.count("t") == 3


def test_add_record_sanitizes_field_names(grid, people_db):
    result = grid.handle("add_record", {"na`me": "Eve", "t.active": 1})
    assert result["success"] is True
    assert people_db.first("t", "id = ?", [result["id"]])["name"] == "Eve"


def test_add_record_without_valid_fields_fails(grid, people_db):
    result = grid.handle("add_record", {"nope": "x"})
    assert result["success"] is False
    assert people_db.count("t") == 2


def test_add_record_rejects_non_numeric_value(grid, people_db):
    result = grid.handle("add_record", {"name": "Zed", "active": "yes"})
    assert result["success"] is False
    assert people_db.count("t") == 2


def test_add_record_rejects_empty_required_field(grid):
    assert grid.handle("add_record", {"name": "", "active": 1})["success"] is False


def test_edit_requires_id(grid):
    assert grid.handle("edit_record", {"name": "x"})["success"] is False
    assert grid.handle("edit_record", {"id": "abc", "name": "x"})["success"] is False


def test_edit_without_fields_fails(grid):
    assert grid.handle("edit_record", {"id": 1})["success"] is False


def test_delete_twice_reports_zero_the_second_time(grid, people_db):
    first = grid.handle("delete_record", {"id": 1})
    second = grid.handle("delete_record", {"id": 1})

    assert first["success"] is True
    assert first["affected_rows"] == 1
    assert second["success"] is True
    assert second["affected_rows"] == 0
    assert people_db.count("t") == 1


def test_delete_requires_id(grid):
    assert grid.handle("delete_record", {})["success"] is False


def test_fixed_where_limits_writes(people_db):
    config = GridConfig("t").columns(["name"]).where([{"field": "active", "comparator": "=", "value": 1}])
    grid = DataGrid(people_db, config)

    assert grid.handle("delete_record", {"id": 2})["affected_rows"] == 0
    assert grid.handle("edit_record", {"id": 2, "name": "Hidden"})["affected_rows"] == 0
    assert people_db.first("t", "id = ?", [2])["name"] == "Bob"


def test_fetch_record_respects_fixed_where(people_db):
    config = GridConfig("t").columns(["name"]).where([{"field": "active", "comparator": "=", "value": 1}])
    grid = DataGrid(people_db, config)

    assert grid.handle("fetch_record", {"id": 1})["data"]["name"] == "Alice"
    hidden = grid.handle("fetch_record", {"id": 2})
    assert hidden["success"] is False
    assert "data" not in hidden


def test_fetch_record_missing(grid):
    result = grid.handle("fetch_record", {"id": 99})
    assert result["success"] is False


# ============================================================================
# 别名表上的写操作
# ============================================================================

@pytest.fixture
def aliased_grid(people_db):
    config = (
        GridConfig("t s")
        .columns(["s.name", "s.active"])
        .where([{"field": "s.active", "comparator": ">=", "value": 0}])
        .inline_editable(["s.name"])
        .primary_key("s.id")
    )
    return DataGrid(people_db, config)


def _write_statements(db):
    return [e["sql"] for e in db.get_query_log() if e["sql"].startswith(("UPDATE", "DELETE", "INSERT"))]


def test_writes_on_aliased_table_use_unqualified_columns(aliased_grid, people_db):
    people_db.enable_profiling()

    assert aliased_grid.handle("edit_record", {"id": 1, "name": "Alicia"})["affected_rows"] == 1
    assert aliased_grid.handle("inline_edit", {"id": 1, "field": "s.name", "value": "Ally"})["affected_rows"] == 1
    assert aliased_grid.handle("delete_record", {"id": 2})["affected_rows"] == 1

    statements = _write_statements(people_db)
    assert statements == [
        "UPDATE `t` SET `name` = ? WHERE (`active` >= ? AND `id` = ?)",
        "UPDATE `t` SET `name` = ? WHERE (`active` >= ? AND `id` = ?)",
        "DELETE FROM `t` WHERE (`active` >= ? AND `id` = ?)",
    ]
    assert all("s." not in sql for sql in statements)
    assert people_db.first("t", "id = ?", [1])["name"] == "Ally"


def test_reads_on_aliased_table_keep_qualified_columns(aliased_grid):
    result = aliased_grid.handle("fetch_data", {})
    assert result["data"][0] == {"s.name": "Alice", "s.active": 1, "id": 1}


# ============================================================================
# 批量操作
# ============================================================================

def _delete_until_failure(fail_at):
    def callback(selected_ids, db, base_table):
        for index, record_id in enumerate(selected_ids):
            if index == fail_at:
                raise RuntimeError("storage offline")
            db.query(f"DELETE FROM {base_table} WHERE id = ?").bind([record_id]).execute()
        return True

    return callback


def test_bulk_action_rolls_back_everything_on_failure(people_db):
    people_db.insert_batch("t", ["name", "active"], [("c", 1), ("d", 1)])
    config = (
        GridConfig("t")
        .columns(["name"])
        .bulk_actions(True, {"purge": {"callback": _delete_until_failure(2), "error_message": "purge failed"}})
    )
    grid = DataGrid(people_db, config)

    result = grid.handle("bulk_action", {"bulk_action": "purge", "selected_ids": [1, 2, 3, 4]})
    assert result == {"success": False, "message": "purge failed"}
    assert people_db.count("t") == 4
    assert people_db.in_transaction() is False


def test_bulk_action_false_result_rolls_back(people_db):
    def callback(selected_ids, db, base_table):
        db.query(f"DELETE FROM {base_table}").execute()
        return False

    config = GridConfig("t").columns(["name"]).bulk_actions(True, {"wipe": {"callback": callback}})
    result = DataGrid(people_db, config).handle("bulk_action", {"bulk_action": "wipe", "selected_ids": "[1]"})
    assert result["success"] is False
    assert people_db.count("t") == 2


def test_bulk_action_affected_rows(people_db):
    config = GridConfig("t").columns(["name"]).bulk_actions(
        True,
        {
            "touch": {"callback": lambda ids, db, table: True, "success_message": "touched"},
            "count": {"callback": lambda ids, db, table: 7},
        },
    )
    grid = DataGrid(people_db, config)

    touched = grid.handle("bulk_action", {"bulk_action": "touch", "selected_ids": "[1, 2, 2, -5]"})
    assert touched == {"success": True, "message": "touched", "affected_rows": 2}
    assert grid.handle("bulk_action", {"bulk_action": "count", "selected_ids": "[1]"})["affected_rows"] == 7


def test_bulk_action_failed_commit_releases_transaction(people_db, monkeypatch):
    config = GridConfig("t").columns(["name"]).bulk_actions(True)
    grid = DataGrid(people_db, config)
    monkeypatch.setattr(people_db, "commit", lambda: False)

    result = grid.handle("bulk_action", {"bulk_action": "delete", "selected_ids": "[1]"})
    assert result["success"] is False
    assert people_db.in_transaction() is False
    assert people_db.count("t") == 2
    assert people_db.transaction() is True
    people_db.rollback()


def test_bulk_action_callback_receives_contract_arguments(people_db):
    calls = []
    registry = CallbackRegistry().register_bulk("mark", lambda ids, db, table: calls.append((ids, db, table)))
    config = GridConfig("t s").columns(["s.name"]).primary_key("s.id").bulk_actions(True, {"mark": {}})
    grid = DataGrid(people_db, config, callbacks=registry)

    assert grid.handle("bulk_action", {"bulk_action": "mark", "selected_ids": "[2, 1]"})["success"] is True
    assert calls == [([2, 1], people_db, "t")]


def test_bulk_action_rejections(people_db):
    disabled = DataGrid(people_db, GridConfig("t").columns(["name"]))
    assert disabled.handle("bulk_action", {"bulk_action": "delete", "selected_ids": "[1]"})["success"] is False

    enabled = DataGrid(people_db, GridConfig("t").columns(["name"]).bulk_actions(True))
    assert enabled.handle("bulk_action", {"bulk_action": "unknown", "selected_ids": "[1]"})["success"] is False
    assert enabled.handle("bulk_action", {"bulk_action": "delete", "selected_ids": "[]"})["success"] is False
    assert enabled.handle("bulk_action", {"bulk_action": "delete", "selected_ids": "not json"})["success"] is False
    assert people_db.count("t") == 2


# ============================================================================
# 行内编辑
# ============================================================================

def test_inline_edit_validates_value(grid, people_db):
    result = grid.handle("inline_edit", {"id": 2, "field": "active", "value": "1"})
    assert result["success"] is True
    assert result["data"] == {"active": 1}
    assert people_db.first("t", "id = ?", [2])["active"] == 1

    assert grid.handle("inline_edit", {"id": 2, "field": "active", "value": "many"})["success"] is False


def test_inline_edit_rejects_fields_outside_allow_list(people_db):
    grid = DataGrid(people_db, GridConfig("t").columns(["name", "active"]).inline_editable(["name"]))
    assert grid.handle("inline_edit", {"id": 1, "field": "active", "value": 0})["success"] is False
    assert grid.handle("inline_edit", {"id": 1, "field": "", "value": 0})["success"] is False
    assert people_db.first("t", "id = ?", [1])["active"] == 1


# ============================================================================
# 行操作回调
# ============================================================================

def test_action_callback_contract(people_db):
    calls = []

    def archive(row_id, row_data, db, base_table):
        calls.append((row_id, row_data, base_table))

    config = GridConfig("t").columns(["name"]).action_groups(
        ["edit", {"archive": {"icon": "box", "callback": archive, "success_message": "archived"}}]
    )
    grid = DataGrid(people_db, config)

    result = grid.handle("action_callback", {"action_name": "archive", "row_id": "1", "row_data": '{"name": "Alice"}'})
    assert result == {"success": True, "message": "archived"}
    assert calls == [(1, {"name": "Alice"}, "t")]


def test_action_callback_failures(people_db):
    config = GridConfig("t").columns(["name"]).action_groups(
        [{"reject": {"callback": lambda *args: False, "error_message": "nope"},
          "explode": {"callback": lambda *args: 1 / 0}}]
    )
    grid = DataGrid(people_db, config)

    assert grid.handle("action_callback", {"action_name": "reject", "row_id": 1}) == {"success": False, "message": "nope"}
    assert grid.handle("action_callback", {"action_name": "explode", "row_id": 1})["success"] is False
    assert grid.handle("action_callback", {"action_name": "missing", "row_id": 1})["success"] is False
    assert grid.handle("action_callback", {"action_name": "reject"})["success"] is False


def test_action_callback_result_is_returned_as_data(people_db):
    config = GridConfig("t").columns(["name"]).action_groups([{"info": {"callback": lambda *args: {"ok": 1}}}])
    result = DataGrid(people_db, config).handle("action_callback", {"action_name": "info", "row_id": 1})
    assert result["data"] == {"ok": 1}


# ============================================================================
# 文件上传
# ============================================================================

def test_upload_without_storage_fails(contacts_db):
    grid = DataGrid(contacts_db, GridConfig("contacts").columns(["name", "avatar"]))
    assert grid.handle("upload_file", {"field": "avatar", "file": "me.png"})["success"] is False
    assert grid.handle("add_record", {"name": "x", "files": {"avatar": "me.png"}})["success"] is False


def test_upload_and_add_with_storage(contacts_db):
    storage = MemoryStorage()
    config = GridConfig("contacts").columns(["name", "avatar"]).file_upload("media/", ["png"], 1024)
    grid = DataGrid(contacts_db, config, storage=storage)

    uploaded = grid.handle("upload_file", {"field": "avatar", "file": "me.png"})
    assert uploaded["data"] == {"field": "avatar", "filename": "stored-me.png"}

    added = grid.handle("add_record", {"name": "gamma", "files": {"avatar": "g.jpg"}})
    assert added["success"] is True
    assert contacts_db.first("contacts", "id = ?", [added["id"]])["avatar"] == "stored-g.jpg"
    assert storage.saved[-1] == ("avatar", "g.jpg", "media/")

    rejected = grid.handle("upload_file", {"field": "avatar", "file": "virus.exe"})
    assert rejected["success"] is False
    assert grid.handle("upload_file", {"field": "unknown", "file": "a.png"})["success"] is False


# ============================================================================
# select2 选项
# ============================================================================

@pytest.fixture
def lookup_grid(db):
    db.query("CREATE TABLE categories (id INTEGER PRIMARY KEY, title TEXT, parent_id INTEGER)").execute()
    db.query("CREATE TABLE products (id INTEGER PRIMARY KEY, name TEXT, category_id INTEGER, subcategory_id INTEGER)").execute()
    db.insert_batch(
        "categories",
        ["id", "title", "parent_id"],
        [(1, "Books", None), (2, "Music", None), (3, "Bolts", 1), (4, "Boots", 1)],
    )
    config = GridConfig("products").columns(
        {
            "name": "Name",
            "category_id": {
                "type": "select2",
                "query": "SELECT id AS ID, title AS Label FROM categories ORDER BY title",
                "max_results": 2,
            },
            "subcategory_id": {
                "type": "select2",
                "query": "SELECT id AS ID, title AS Label FROM categories WHERE parent_id = {category_id}",
            },
        }
    )
    return DataGrid(db, config)


def test_lookup_options_search_and_limit(lookup_grid):
    result = lookup_grid.handle("fetch_select2_options", {"field": "category_id", "search": "Bo"})
    assert result["results"] == [{"ID": 3, "Label": "Bolts"}, {"ID": 1, "Label": "Books"}]

    unlimited = lookup_grid.handle("fetch_select2_options", {"field": "category_id", "search": "Bo", "max_results": 0})
    assert len(unlimited["results"]) == 3


def test_lookup_options_value_filter(lookup_grid):
    result = lookup_grid.handle("fetch_select2_options", {"field": "category_id", "value_filter": "2"})
    assert result["results"] == [{"ID": 2, "Label": "Music"}]


def test_lookup_options_substitutes_record_data(lookup_grid):
    result = lookup_grid.handle(
        "fetch_select2_options", {"field": "subcategory_id", "record_data": '{"category_id": 1}'}
    )
    assert sorted(r["Label"] for r in result["results"]) == ["Bolts", "Boots"]

    empty = lookup_grid.handle("fetch_select2_options", {"field": "subcategory_id"})
    assert empty["results"] == []


def test_lookup_options_by_exact_query(lookup_grid):
    query = "SELECT id AS ID, title AS Label FROM categories ORDER BY title"
    assert lookup_grid.handle("fetch_select2_options", {"query": query})["success"] is True


def test_lookup_options_reject_unconfigured_query(lookup_grid):
    result = lookup_grid.handle("fetch_select2_options", {"query": "SELECT password AS ID, email AS Label FROM users"})
    assert result["success"] is False


def test_substitute_query_parameters():
    def quote(value):
        return "'" + value.replace("'", "''") + "'"

    sql = substitute_query_parameters(
        "SELECT * FROM c WHERE a = {a} AND b = {b} AND c = {c} AND d = {d}",
        {"a": 5, "b": "O'Neil", "c": "2.5"},
        quote,
    )
    assert sql == "SELECT * FROM c WHERE a = 5 AND b = 'O''Neil' AND c = 2.5 AND d = NULL"


def test_lookup_params_have_independent_defaults(lookup_grid):
    first = lookup_grid.handle("fetch_select2_options", {"field": "category_id"})
    second = lookup_grid.handle("fetch_select2_options", {"field": "category_id", "record_data": {"category_id": 2}})
    assert [r["Label"] for r in first["results"]] == ["Bolts", "Books"]
    assert second["success"] is True

    _, params = parse_request("fetch_select2_options", {})
    _, other = parse_request("fetch_select2_options", {})
    params.record_data["x"] = 1
    assert other.record_data == {}
