"""
查询组装测试：只验证生成的 SQL 与参数，不访问数据库
"""
import pytest

from gridkit.common.db_components import TableNameResolver
from gridkit.common.db_manager import DBManager
from gridkit.grid.config import GridConfig
from gridkit.grid.query_assembler import (
    QueryAssembler,
    append_conditions,
    parse_lookup_columns,
    render_condition,
    render_conditions,
)
from gridkit.grid.query_builder import QueryBuilder

RESOLVER = TableNameResolver("`")


def make_assembler(config: GridConfig) -> QueryAssembler:
    return QueryAssembler(config, RESOLVER)


@pytest.fixture
def users_config():
    return GridConfig("users").columns(["name", "email"]).sortable(["name"]).per_page(10)


# ============================================================================
# SELECT 字段
# ============================================================================

def test_select_fields_alias_plain_columns_and_add_primary_key(users_config):
    assert make_assembler(users_config).select_fields() == [
        "`name` AS `name`",
        "`email` AS `email`",
        "`id` AS `id`",
    ]


def test_select_fields_keep_aliased_expressions_verbatim():
    config = GridConfig("streams s").columns({"s.name": "Name", "c.title AS category": "Category"}).primary_key("s.id")
    assert make_assembler(config).select_fields() == [
        "s.name AS `s.name`",
        "c.title AS category",
        "s.id AS `id`",
    ]


def test_select_fields_include_action_template_fields(users_config):
    users_config.action_groups([{"view": {"href": "/users/{id}?slug={slug}", "title": "{name}"}}])
    fields = make_assembler(users_config).select_fields()
    assert fields[-1] == "`slug`"
    assert fields.count("`name` AS `name`") == 1


# ============================================================================
# 数据查询
# ============================================================================

def test_data_query_plain(users_config):
    sql, params = make_assembler(users_config).data_query()
    assert sql == "SELECT `name` AS `name`, `email` AS `email`, `id` AS `id` FROM `users` LIMIT 10"
    assert params == []


def test_search_is_or_across_configured_columns(users_config):
    sql, params = make_assembler(users_config).data_query(search="ali")
    assert "WHERE (`name` LIKE ? OR `email` LIKE ?)" in sql
    assert params == ["%ali%", "%ali%"]


def test_search_specific_column(users_config):
    sql, params = make_assembler(users_config).data_query(search="ali", search_column="email")
    assert "WHERE `email` LIKE ?" in sql
    assert params == ["%ali%"]


def test_unknown_search_column_is_ignored(users_config):
    sql, params = make_assembler(users_config).data_query(search="x", search_column="password")
    assert "WHERE" not in sql
    assert params == []


def test_search_casts_columns_to_text_on_postgresql():
    pg = DBManager({"driver": "pgsql", "host": "db", "schema": "app", "username": "u", "password": "p"})
    config = GridConfig("orders o").columns(["o.number", "o.total", "c.name AS customer"])

    sql, params = QueryAssembler(config, pg.resolver).data_query(search="12")
    assert "WHERE (CAST(o.number AS TEXT) LIKE ? OR CAST(o.total AS TEXT) LIKE ? OR CAST(c.name AS TEXT) LIKE ?)" in sql
    assert params == ["%12%"] * 3
    assert pg.is_connected is False


def test_search_uses_plain_columns_on_sqlite(users_config):
    sql, _ = QueryAssembler(users_config, DBManager({"driver": "sqlite"}).resolver).data_query(search="a")
    assert "CAST" not in sql


def test_search_disabled(users_config):
    users_config.search(False)
    sql, _ = make_assembler(users_config).data_query(search="ali")
    assert "LIKE" not in sql


def test_search_uses_expression_for_aliased_column():
    config = GridConfig("streams s").columns(["s.name", "c.title AS category"]).primary_key("s.id")
    sql, _ = make_assembler(config).data_query(search="news")
    assert "(s.name LIKE ? OR c.title LIKE ?)" in sql


def test_where_and_search_are_combined_with_and(users_config):
    users_config.where([{"field": "active", "comparator": "=", "value": 1}])
    sql, params = make_assembler(users_config).data_query(search="ali")
    assert "WHERE (`active` = ? AND (`name` LIKE ? OR `email` LIKE ?))" in sql
    assert params == [1, "%ali%", "%ali%"]


def test_joins_in_configured_order():
    config = (
        GridConfig("streams s")
        .columns(["s.name"])
        .join("LEFT", "categories c", "c.id = s.category_id")
        .join("inner", "providers p", "p.id = s.provider_id")
        .primary_key("s.id")
    )
    sql, _ = make_assembler(config).data_query()
    assert "FROM streams s LEFT JOIN categories c ON c.id = s.category_id INNER JOIN providers p ON p.id = s.provider_id" in sql


# ============================================================================
# 排序与分页
# ============================================================================

def test_sort_by_allowed_column(users_config):
    sql, _ = make_assembler(users_config).data_query(sort_column="name", sort_direction="desc")
    assert sql.endswith("ORDER BY `name` DESC LIMIT 10")


def test_sort_rejected_when_not_allowed(users_config):
    sql, _ = make_assembler(users_config).data_query(sort_column="email; DROP TABLE users")
    assert "ORDER BY" not in sql


def test_sort_direction_is_normalized(users_config):
    sql, _ = make_assembler(users_config).data_query(sort_column="name", sort_direction="sideways")
    assert "ORDER BY `name` ASC" in sql


def test_default_sort_applies_when_request_has_none(users_config):
    users_config.default_sort("email", "desc")
    sql, _ = make_assembler(users_config).data_query(sort_column="bogus")
    assert "ORDER BY `email` DESC" in sql


def test_sort_by_alias_of_expression():
    config = GridConfig("streams s").columns(["s.name", "c.title AS category"]).sortable(["category"]).primary_key("s.id")
    assembler = make_assembler(config)
    assert assembler.resolve_sort("category", "ASC") == ("`category`", "ASC")
    assert assembler.resolve_sort("c.title AS category", "DESC") == ("`category`", "DESC")


def test_sort_qualified_column():
    config = GridConfig("streams s").columns(["s.name"]).sortable(["s.name"]).primary_key("s.id")
    assert make_assembler(config).resolve_sort("s.name") == ("s.name", "ASC")


@pytest.mark.parametrize(
    "page, per_page, tail",
    [(1, 10, "LIMIT 10"), (3, 10, "LIMIT 10 OFFSET 20"), (2, 25, "LIMIT 25 OFFSET 25")],
)
def test_paging(users_config, page, per_page, tail):
    sql, _ = make_assembler(users_config).data_query(page=page, per_page=per_page)
    assert sql.endswith(tail)


def test_per_page_zero_means_no_limit(users_config):
    sql, _ = make_assembler(users_config).data_query(page=4, per_page=0)
    assert "LIMIT" not in sql
    assert "OFFSET" not in sql


def test_normalize_paging_defaults():
    assert QueryAssembler.normalize_paging(0, None, 25) == (1, 25)
    assert QueryAssembler.normalize_paging(2, 0, 25) == (2, 0)


# ============================================================================
# 计数与聚合
# ============================================================================

def test_count_uses_same_filters(users_config):
    users_config.where([{"field": "active", "comparator": "=", "value": 1}])
    sql, params = make_assembler(users_config).count_query(search="ali")
    assert sql == "SELECT COUNT(*) AS total FROM `users` WHERE (`active` = ? AND (`name` LIKE ? OR `email` LIKE ?))"
    assert params == [1, "%ali%", "%ali%"]


def test_count_with_group_by_counts_groups():
    config = GridConfig("orders o").columns(["o.customer"]).group_by("o.customer").primary_key("o.id")
    sql, _ = make_assembler(config).count_query()
    assert sql == (
        "SELECT COUNT(*) AS total FROM (SELECT 1 AS grouped_row FROM orders o GROUP BY o.customer) AS grouped"
    )


def test_aggregation_query_ungrouped():
    config = GridConfig("orders").columns(["amount"]).footer_aggregate("amount", "both")
    sql, params = make_assembler(config).aggregation_query()
    assert sql == "SELECT SUM(`amount`) AS `amount_sum`, AVG(`amount`) AS `amount_avg` FROM `orders`"
    assert params == []


def test_aggregation_query_grouped_uses_per_group_subquery():
    config = (
        GridConfig("invoices i")
        .columns(["i.total"])
        .join("INNER", "invoice_lines l", "l.invoice_id = i.id")
        .group_by("i.id")
        .footer_aggregate("i.total", "sum")
        .primary_key("i.id")
    )
    sql, _ = make_assembler(config).aggregation_query()
    assert sql == (
        "SELECT SUM(`total`) AS `total_sum` FROM ("
        "SELECT MAX(i.total) AS `total` FROM invoices i INNER JOIN invoice_lines l ON l.invoice_id = i.id "
        "GROUP BY i.id) AS grouped_data"
    )


def test_aggregation_of_calculated_column_uses_expression():
    config = (
        GridConfig("orders")
        .columns(["price", "qty"])
        .calculated_column("line_total", "Line Total", ["price", "qty"], "*")
        .footer_aggregate("line_total", "sum")
    )
    sql, _ = make_assembler(config).aggregation_query()
    assert sql == "SELECT SUM((price * qty)) AS `line_total_sum` FROM `orders`"


def test_page_scope_aggregation_wraps_data_query():
    config = GridConfig("orders").columns(["amount"]).per_page(5).footer_aggregate("amount", "avg", "page")
    assembler = make_assembler(config)
    assert assembler.aggregation_query() is None
    sql, _ = assembler.page_aggregation_query(page=2)
    assert sql == (
        "SELECT AVG(`amount`) AS `amount_avg` FROM ("
        "SELECT `amount` AS `amount`, `id` AS `id` FROM `orders` LIMIT 5 OFFSET 5) AS page_data"
    )


# ============================================================================
# 结构化条件
# ============================================================================

def test_render_condition_variants():
    assert render_condition({"field": "status", "comparator": "IN", "value": ["a", "b"]}, RESOLVER).render() == (
        "`status` IN (?, ?)",
        ["a", "b"],
    )
    assert render_condition({"field": "s.deleted_at", "comparator": "=", "value": None}, RESOLVER).sql == "s.deleted_at IS NULL"
    assert render_condition({"field": "x", "comparator": "<>", "value": None}, RESOLVER).sql == "`x` IS NOT NULL"


def test_render_condition_strip_alias():
    condition = render_condition({"field": "s.active", "comparator": "=", "value": 1}, RESOLVER, strip_alias=True)
    assert condition.render() == ("`active` = ?", [1])


def test_render_grouped_conditions():
    where = {
        "AND": [{"field": "active", "comparator": "=", "value": 1}],
        "OR": [
            {"field": "role", "comparator": "=", "value": "admin"},
            {"field": "role", "comparator": "=", "value": "owner"},
        ],
    }
    sql, params = render_conditions(where, RESOLVER).render()
    assert sql == "(`active` = ? AND (`role` = ? OR `role` = ?))"
    assert params == [1, "admin", "owner"]


def test_query_builder_offset_without_limit_is_ignored():
    sql, _ = QueryBuilder("`t`").offset(10).build()
    assert sql == "SELECT * FROM `t`"


# ============================================================================
# select2 查询
# ============================================================================

def test_parse_lookup_columns():
    assert parse_lookup_columns("SELECT c.id AS ID, c.title AS Label FROM categories c") == ("c.id", "c.title")
    assert parse_lookup_columns("SELECT * FROM categories") == ("ID", None)


def test_append_conditions_keeps_trailing_order_by():
    sql = append_conditions("SELECT id AS ID, name AS Label FROM c ORDER BY name", ["id = ?"], 5)
    assert sql == "SELECT id AS ID, name AS Label FROM c WHERE id = ? ORDER BY name LIMIT 5"


def test_append_conditions_extends_existing_where():
    sql = append_conditions("SELECT id AS ID, name AS Label FROM c WHERE active = 1;", ["name LIKE ?", "id = ?"])
    assert sql == "SELECT id AS ID, name AS Label FROM c WHERE active = 1 AND (name LIKE ? AND id = ?)"


def test_lookup_label_query_filters_on_id_expression(users_config):
    sql, params = make_assembler(users_config).lookup_label_query(
        "SELECT c.id AS ID, c.title AS Label FROM categories c", [3, 4]
    )
    assert sql == "SELECT c.id AS ID, c.title AS Label FROM categories c WHERE c.id IN (?, ?)"
    assert params == [3, 4]
