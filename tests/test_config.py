"""
表格配置与结果对象测试
"""
import pytest

from gridkit.grid.config import GridConfig
from gridkit.grid.results import GridResult


def test_table_alias_parsing():
    config = GridConfig("streams s")
    assert config.base_table == "streams"
    assert config.table_alias == "s"
    assert config.table_name == "streams s"

    with pytest.raises(ValueError):
        GridConfig("users; DROP TABLE users")


def test_columns_generate_labels():
    config = GridConfig("t").columns(["user_name", "u.created_at", "c.title AS category"])
    assert config.get_columns() == {
        "user_name": "User Name",
        "u.created_at": "Created At",
        "c.title AS category": "Category",
    }


def test_column_settings_are_split_from_labels():
    config = GridConfig("t").columns({"status": {"label": "State", "type": "select", "options": ["a", "b"]}})
    assert config.get_columns() == {"status": "State"}
    assert config.get_column_settings("status") == {"type": "select", "options": ["a", "b"]}


def test_where_validation():
    with pytest.raises(ValueError):
        GridConfig("t").where([{"field": "id", "comparator": "IN", "value": 3}])
    with pytest.raises(ValueError):
        GridConfig("t").where([{"field": "id", "comparator": "~", "value": 3}])
    with pytest.raises(ValueError):
        GridConfig("t").where({"XOR": []})

    config = GridConfig("t").where([{"field": "id", "comparator": "not in", "value": (1, 2)}])
    assert config.get_where() == [{"field": "id", "comparator": "NOT IN", "value": [1, 2]}]


def test_join_type_validation():
    config = GridConfig("t a").join("left", "b", "b.id = a.b_id")
    assert config.get_joins() == [{"type": "LEFT", "table": "b", "condition": "b.id = a.b_id"}]
    with pytest.raises(ValueError):
        config.join("CROSS", "c", "1 = 1")


def test_calculated_columns():
    config = GridConfig("t").columns(["price"]).calculated_column("total", "Total", ["price", "tax"], "+")
    assert "(price + tax) AS total" in config.get_columns()

    config.calculated_column("total", "Total", ["price", "tax"], "*")
    keys = [k for k in config.get_columns() if k.endswith("AS total")]
    assert keys == ["(price * tax) AS total"]

    with pytest.raises(ValueError):
        config.calculated_column("bad", "Bad", ["price"])
    with pytest.raises(ValueError):
        config.calculated_column("bad", "Bad", ["price", "tax"], "^")
    with pytest.raises(ValueError):
        config.calculated_column("bad alias", "Bad", ["price", "tax"])


def test_footer_aggregate_validation():
    config = GridConfig("t").footer_aggregate("amount", "SUM", "Page")
    assert config.get_footer_aggregations()["amount"]["scope"] == "page"
    with pytest.raises(ValueError):
        config.footer_aggregate("amount", "median")
    with pytest.raises(ValueError):
        config.footer_aggregate("amount", "sum", "week")
    with pytest.raises(ValueError):
        config.footer_aggregate("amount) --", "sum")


def test_frozen_config_rejects_changes():
    config = GridConfig("t").freeze()
    assert config.frozen
    for mutate in (lambda: config.columns(["a"]), lambda: config.where([]), lambda: config.primary_key("x")):
        with pytest.raises(RuntimeError):
            mutate()


def test_from_dict():
    config = GridConfig.from_dict(
        {
            "table": "orders o",
            "joins": [{"type": "LEFT", "table": "customers c", "condition": "c.id = o.customer_id"}],
            "columns": {"o.number": "Number", "c.name AS customer": "Customer"},
            "calculated_columns": [{"alias": "gross", "expression": "o.net + o.tax"}],
            "footer_aggregations": {"gross": {"type": "both"}},
            "sortable": ["o.number"],
            "per_page": 10,
            "primary_key": "o.id",
            "bulk_actions": {"enabled": True},
            "default_sort": {"column": "o.number", "direction": "desc"},
            "file_upload": {"upload_path": "files/", "allowed_extensions": [".PDF"]},
            "edit_form": {"title": "Edit", "fields": ["o.number"], "size": "lg"},
        }
    )
    assert config.get_joins()[0]["type"] == "LEFT"
    assert config.get_calculated_columns()["gross"]["expression"] == "(o.net + o.tax)"
    assert config.get_footer_aggregations()["gross"]["type"] == "both"
    assert config.get_per_page() == 10
    assert config.get_primary_key() == "o.id"
    assert "delete" in config.get_bulk_actions()
    assert config.get_default_sort() == ("o.number", "DESC")
    assert config.get_file_upload()["allowed_extensions"] == ["pdf"]
    assert config.get_edit_form() == {"title": "Edit", "fields": ["o.number"], "size": "lg"}

    with pytest.raises(ValueError):
        GridConfig.from_dict({"columns": ["a"]})


def test_row_actions_are_collected_from_groups():
    config = GridConfig("t").action_groups(["edit", {"ship": {"icon": "truck"}}, {"bill": {"title": "Bill"}}])
    assert set(config.get_row_actions()) == {"ship", "bill"}


def test_result_page_of():
    assert GridResult.page_of([], 23, 2, 5).total_pages == 5
    assert GridResult.page_of([], 0, 1, 10).total_pages == 0
    assert GridResult.page_of([{"a": 1}], 1, 1, 0).total_pages == 1


def test_result_to_dict_omits_unset_fields():
    assert GridResult.fail("bad").to_dict() == {"success": False, "message": "bad"}
    assert GridResult.ok(affected_rows=0).to_dict() == {"success": True, "affected_rows": 0}
