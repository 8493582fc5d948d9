#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
字段验证

按表结构中的语义类型验证并转换提交的字段值。
只做类型校验与转换，不做 HTML 转义（那是渲染层的职责）。
"""

import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, Optional

from gridkit.common.constants import FieldTypes
from gridkit.common.exceptions import ValidationError
from gridkit.common.logging_utils import get_logger
from gridkit.grid.schema import TableSchema

_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_FALSY_STRINGS = ("", "0", "false", "off", "no")


class FieldValidator:
    """字段验证器

    规则：
    - 空值（None 或空白字符串）只在列可空时接受，结果为 None
    - number: 必须是数字，转换为 int 或 float
    - boolean/checkbox: 真值转换为 1，假值转换为 0
    - email: 必须符合邮箱格式
    - date / datetime-local: 必须按 %Y-%m-%d / %Y-%m-%dT%H:%M 精确解析并原样回写
    - 其它类型: 去除首尾空白的字符串
    """

    def __init__(self, schema: TableSchema):
        self.schema = schema
        self.logger = get_logger("FieldValidator")

    def validate_field(self, name: str, value: Any) -> Any:
        """验证单个字段并返回转换后的值

        Raises:
            ValidationError: 列不存在或值不符合类型要求
        """
        info = self.schema.get(name)
        if info is None:
            raise ValidationError(f"未知字段: {name}")

        field_type = info.effective_type
        if field_type in (FieldTypes.BOOLEAN, FieldTypes.CHECKBOX) and value is not None:
            return self._to_flag(value)

        if value is None or (isinstance(value, str) and value.strip() == ""):
            if info.nullable:
                return None
            raise ValidationError(f"字段 {name} 不能为空")

        if field_type == FieldTypes.NUMBER:
            return self._to_number(name, value)
        if field_type == FieldTypes.EMAIL:
            text = str(value).strip()
            if not _EMAIL_RE.match(text):
                raise ValidationError(f"字段 {name} 不是有效的邮箱地址")
            return text
        if field_type == FieldTypes.DATE:
            return self._to_exact_datetime(name, value, FieldTypes.DATE_FORMAT)
        if field_type == FieldTypes.DATETIME:
            return self._to_exact_datetime(name, value, FieldTypes.DATETIME_FORMAT)
        return str(value).strip()

    def validate_fields(
        self, data: Dict[str, Any], exclude: Optional[Iterable[str]] = None
    ) -> Dict[str, Any]:
        """验证一组字段，跳过 exclude 中的列和表结构中不存在的列"""
        excluded = set(exclude or [])
        validated = {}
        for name, value in data.items():
            if name in excluded:
                continue
            if name not in self.schema:
                self.logger.debug(f"忽略表结构中不存在的字段: {name}")
                continue
            validated[name] = self.validate_field(name, value)
        return validated

    @staticmethod
    def _to_flag(value: Any) -> int:
        if isinstance(value, str):
            return 0 if value.strip().lower() in _FALSY_STRINGS else 1
        return 1 if value else 0

    @staticmethod
    def _to_number(name: str, value: Any):
        if isinstance(value, bool):
            raise ValidationError(f"字段 {name} 必须是数字")
        if isinstance(value, (int, float)):
            return value
        text = str(value).strip()
        if not _NUMBER_RE.match(text):
            raise ValidationError(f"字段 {name} 必须是数字")
        if re.search(r"[.eE]", text):
            return float(text)
        return int(text)

    @staticmethod
    def _to_exact_datetime(name: str, value: Any, fmt: str) -> str:
        if isinstance(value, datetime) or (isinstance(value, date) and fmt == FieldTypes.DATE_FORMAT):
            return value.strftime(fmt)
        text = str(value).strip()
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            raise ValidationError(f"字段 {name} 的格式必须为 {fmt}")
        if parsed.strftime(fmt) != text:
            raise ValidationError(f"字段 {name} 的格式必须为 {fmt}")
        return text
