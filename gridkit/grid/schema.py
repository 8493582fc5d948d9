"""
表结构与字段类型推断

把数据库列定义映射为语义字段类型，并叠加列配置中的类型覆盖。
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from gridkit.common.constants import FieldTypes
from gridkit.common.db_components.table_name_resolver import TableNameResolver
from gridkit.common.logging_utils import get_logger

logger = get_logger(__name__)

_ENUM_VALUE_RE = re.compile(r"'((?:[^'\\]|\\.|'')*)'")


def infer_field_type(raw_type: str) -> str:
    """根据数据库列类型推断语义字段类型

    规则按顺序匹配：
    - tinyint(1)/boolean/bit(1) → boolean
    - int/decimal/numeric/float/double/real → number
    - datetime/timestamp → datetime-local
    - date → date
    - time → time
    - *text → textarea
    - enum → select
    - 其余 → text
    """
    t = (raw_type or "").strip().lower()
    if re.match(r"^(tinyint\(1\)|boolean|bool\b|bit\(1\))", t):
        return FieldTypes.BOOLEAN
    if re.match(r"^((tiny|small|medium|big)?int(eger)?\d*|decimal|dec|numeric|float\d*|double|real)\b", t):
        return FieldTypes.NUMBER
    if "datetime" in t or "timestamp" in t:
        return FieldTypes.DATETIME
    if t.startswith("date"):
        return FieldTypes.DATE
    if t.startswith("time"):
        return FieldTypes.TIME
    if "text" in t:
        return FieldTypes.TEXTAREA
    if t.startswith("enum"):
        return FieldTypes.SELECT
    return FieldTypes.TEXT


def parse_enum_options(raw_type: str) -> Dict[str, str]:
    """enum('a','b') → {'a': 'a', 'b': 'b'}"""
    match = re.match(r"^\s*enum\s*\((.*)\)\s*$", raw_type or "", re.IGNORECASE | re.DOTALL)
    if not match:
        return {}
    values = [v.replace("''", "'").replace("\\'", "'") for v in _ENUM_VALUE_RE.findall(match.group(1))]
    return {v: v for v in values}


def generate_label(name: str) -> str:
    """user_name / user-name → User Name"""
    return re.sub(r"[_\-]+", " ", name).strip().title()


@dataclass
class ColumnInfo:
    """单列的结构信息"""

    name: str
    raw_type: str = ""
    type: str = FieldTypes.TEXT
    nullable: bool = True
    is_primary_key: bool = False
    default: Any = None
    extra: str = ""
    override_type: Optional[str] = None
    options: Dict[str, str] = field(default_factory=dict)
    settings: Dict[str, Any] = field(default_factory=dict)

    @property
    def effective_type(self) -> str:
        return self.override_type or self.type

    @property
    def lookup_query(self) -> Optional[str]:
        """select2 列的查询（需返回 ID 与 Label 两列）"""
        return self.settings.get("query")

    @property
    def is_lookup(self) -> bool:
        return self.effective_type == FieldTypes.SELECT2 and bool(self.lookup_query)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "raw_type": self.raw_type,
            "type": self.effective_type,
            "inferred_type": self.type,
            "override_type": self.override_type,
            "nullable": self.nullable,
            "is_primary_key": self.is_primary_key,
            "default": self.default,
            "extra": self.extra,
            "options": dict(self.options),
            "settings": dict(self.settings),
        }


class TableSchema:
    """表结构映射

    键为不带表前缀的列名；表使用别名时，带类型覆盖的列同时以 "别名.列名" 登记，
    两种写法都能查到同一个 ColumnInfo。
    """

    def __init__(self, table: str, columns: List[ColumnInfo]):
        self.table = table
        self._columns: Dict[str, ColumnInfo] = {c.name: c for c in columns}

    @classmethod
    def from_database(cls, db, table: str) -> "TableSchema":
        """读取实际表结构并推断字段类型"""
        columns = []
        for raw in db.describe_table(table):
            info = ColumnInfo(
                name=raw["name"],
                raw_type=raw["type"],
                type=infer_field_type(raw["type"]),
                nullable=bool(raw["nullable"]),
                is_primary_key=bool(raw["is_primary_key"]),
                default=raw["default"],
                extra=raw.get("extra") or "",
            )
            if info.type == FieldTypes.SELECT:
                info.options = parse_enum_options(info.raw_type)
            columns.append(info)
        logger.debug(f"已读取表结构 {table}: {len(columns)} 列")
        return cls(table, columns)

    @property
    def primary_key(self) -> Optional[str]:
        for info in self._columns.values():
            if info.is_primary_key:
                return info.name
        return None

    def get(self, name: str) -> Optional[ColumnInfo]:
        """按列名查找，带表前缀的名称查不到时退回到不带前缀的名称"""
        info = self._columns.get(name)
        if info is None and "." in name:
            info = self._columns.get(TableNameResolver.unqualify(name))
        return info

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def __iter__(self) -> Iterator[ColumnInfo]:
        seen = set()
        for info in self._columns.values():
            if id(info) not in seen:
                seen.add(id(info))
                yield info

    def column_names(self) -> List[str]:
        return [info.name for info in self]

    def default_display_columns(self) -> Dict[str, str]:
        """未配置显示列时使用：全部非主键列"""
        return {info.name: generate_label(info.name) for info in self if not info.is_primary_key}

    def apply_overrides(self, column_settings: Dict[str, Dict[str, Any]], alias: Optional[str] = None):
        """叠加列配置中的类型覆盖与选项

        覆盖以不带前缀的列名保存；表有别名时再以 "别名.列名" 保存一份。
        表结构中不存在的列（如关联表的列）按可空文本列登记。
        """
        for column, settings in column_settings.items():
            expression, column_alias = TableNameResolver.split_column_alias(column)
            name = column_alias or TableNameResolver.unqualify(expression)
            info = self._columns.get(name)
            if info is None:
                info = ColumnInfo(name=name)
                self._columns[name] = info

            if settings.get("type"):
                info.override_type = str(settings["type"])
            options = settings.get("options")
            if isinstance(options, dict):
                info.options = {str(k): str(v) for k, v in options.items()}
            elif options:
                info.options = {str(v): str(v) for v in options}
            info.settings.update({k: v for k, v in settings.items() if k not in ("type", "options")})

            if alias:
                self._columns[f"{alias}.{name}"] = info
            if "." in expression and not column_alias:
                self._columns[expression] = info

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {key: info.to_dict() for key, info in self._columns.items()}
