"""
标识符解析器

负责表名与列名的拆分、清洗和方言引用，所有拼接进 SQL 的标识符都经由这里处理。
"""

import re
from typing import Optional, Tuple

_TABLE_ALIAS_RE = re.compile(r"^([A-Za-z0-9_]+)\s+(?:AS\s+)?([A-Za-z0-9_]+)$", re.IGNORECASE)
_COLUMN_ALIAS_RE = re.compile(
    r"^(?P<expr>.+)\s+AS\s+[`'\"]?(?P<alias>[A-Za-z_][A-Za-z0-9_]*)[`'\"]?\s*$",
    re.IGNORECASE | re.DOTALL,
)
_SAFE_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


class TableNameResolver:
    """表名与列名解析器

    职责：
    ----
    1. 拆分 "表名 别名" 形式的表引用
    2. 拆分 "表达式 AS 别名" 形式的列定义
    3. 按方言引用标识符（MySQL/SQLite 使用反引号，PostgreSQL 使用双引号）
    4. 文本匹配时按方言把列转为文本（PostgreSQL 的数字、日期列不支持 LIKE）
    5. 清洗来自请求的列名与标识符

    引用规则：
    --------
    - 带 "." 的限定名（如 u.name）原样输出，由调用方保证其来源于配置
    - 其余标识符加引号，引号字符在名称内部时双写转义

    使用示例：
    --------
    ```python
    resolver = TableNameResolver('`')
    resolver.split_table_alias('users u')   # ('users', 'u')
    resolver.column_sql('name')            # '`name`'
    resolver.column_sql('u.name')          # 'u.name'
    ```
    """

    def __init__(self, quote_char: str = "`", text_cast: str = "{}"):
        self.quote_char = quote_char
        self.text_cast = text_cast

    def quote(self, name: str) -> str:
        q = self.quote_char
        return f"{q}{name.replace(q, q + q)}{q}"

    def text_sql(self, expression: str) -> str:
        """LIKE 左侧的表达式：PostgreSQL 需要先转成文本"""
        return self.text_cast.format(expression)

    def column_sql(self, field: str) -> str:
        """列名在 SQL 中的写法：限定名原样，其余加引号"""
        if "." in field:
            return field
        return self.quote(field)

    def table_sql(self, table: str) -> str:
        """表引用在 SQL 中的写法：带别名的引用原样，其余加引号"""
        if " " in table.strip():
            return table.strip()
        return self.quote(table.strip())

    @staticmethod
    def split_table_alias(table_ref: str) -> Tuple[str, Optional[str]]:
        """解析表引用

        Returns:
            (base_table, alias)，无别名时 alias 为 None
        """
        table_ref = table_ref.strip()
        match = _TABLE_ALIAS_RE.match(table_ref)
        if match:
            return match.group(1), match.group(2)
        return table_ref, None

    @staticmethod
    def split_column_alias(column: str) -> Tuple[str, Optional[str]]:
        """解析列定义中的 "表达式 AS 别名"

        取最后一个 AS，因此 CAST(x AS INT) AS y 解析为 ('CAST(x AS INT)', 'y')。

        Returns:
            (expression, alias)，无别名时 alias 为 None
        """
        match = _COLUMN_ALIAS_RE.match(column.strip())
        if match:
            return match.group("expr").strip(), match.group("alias")
        return column.strip(), None

    @staticmethod
    def unqualify(field: str) -> str:
        """去掉表前缀：u.name → name"""
        return field.rsplit(".", 1)[-1]

    @staticmethod
    def is_safe_identifier(name: str) -> bool:
        """是否为可直接拼接的标识符（可带一级限定）"""
        return bool(name) and bool(_SAFE_IDENTIFIER_RE.match(name))

    @staticmethod
    def sanitize_column_name(name) -> str:
        """仅保留字母、数字、下划线与点"""
        return re.sub(r"[^a-zA-Z0-9_.]", "", str(name or ""))

    @staticmethod
    def sanitize_input(value) -> str:
        """仅保留字母、数字、下划线、连字符与点"""
        return re.sub(r"[^a-zA-Z0-9_\-.]", "", str(value or ""))
