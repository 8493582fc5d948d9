"""
操作结果

所有表格操作都返回 GridResult，由调用方序列化或渲染。
"""

import math
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional


@dataclass
class GridResult:
    """统一的操作结果

    to_dict() 省略值为 None 的字段。
    """

    success: bool
    message: Optional[str] = None
    data: Any = None
    total: Optional[int] = None
    page: Optional[int] = None
    per_page: Optional[int] = None
    total_pages: Optional[int] = None
    affected_rows: Optional[int] = None
    aggregations: Optional[Dict[str, Any]] = None
    id: Any = None
    results: Any = None

    @classmethod
    def ok(cls, message: Optional[str] = None, **kwargs) -> "GridResult":
        return cls(success=True, message=message, **kwargs)

    @classmethod
    def fail(cls, message: str, **kwargs) -> "GridResult":
        return cls(success=False, message=message, **kwargs)

    @classmethod
    def page_of(cls, rows, total: int, page: int, per_page: int) -> "GridResult":
        """数据页结果；per_page 为 0（不分页）时总页数为 1"""
        total_pages = 1 if per_page == 0 else int(math.ceil(total / per_page))
        return cls(
            success=True,
            data=rows,
            total=total,
            page=page,
            per_page=per_page,
            total_pages=total_pages,
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                result[f.name] = value
        return result
