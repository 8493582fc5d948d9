"""
回调与外部协作者接口

批量操作回调、行操作回调和文件存储都由调用方在配置时提供，
这里只定义它们的调用约定和按操作名登记的注册表。
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from gridkit.common.logging_utils import get_logger

logger = get_logger(__name__)


class BulkActionCallback(Protocol):
    """批量操作回调：返回 False 表示失败，返回整数表示影响行数"""

    def __call__(self, selected_ids: List[int], db: Any, base_table: str) -> Any:
        ...


class RowActionCallback(Protocol):
    """行操作回调：返回 False 表示失败"""

    def __call__(self, row_id: int, row_data: Dict[str, Any], db: Any, base_table: str) -> Any:
        ...


class FileStorage(Protocol):
    """文件存储协作者

    负责大小/扩展名校验与保存位置，返回写入记录的文件名。
    校验失败时应抛出 ValidationError。
    """

    def save(self, field: str, upload: Any, settings: Dict[str, Any]) -> str:
        ...


@dataclass
class RegisteredCallback:
    callback: Any
    success_message: Optional[str] = None
    error_message: Optional[str] = None


class CallbackRegistry:
    """按操作名登记的回调注册表"""

    def __init__(self):
        self._bulk: Dict[str, RegisteredCallback] = {}
        self._row: Dict[str, RegisteredCallback] = {}

    @classmethod
    def from_config(cls, config) -> "CallbackRegistry":
        """登记表格配置中声明了 callback 的批量操作与行操作"""
        registry = cls()
        for name, action in config.get_bulk_actions().items():
            if callable(action.get("callback")):
                registry.register_bulk(
                    name, action["callback"], action.get("success_message"), action.get("error_message")
                )
        for name, action in config.get_row_actions().items():
            if callable(action.get("callback")):
                registry.register_row(
                    name, action["callback"], action.get("success_message"), action.get("error_message")
                )
        return registry

    def register_bulk(
        self,
        name: str,
        callback: BulkActionCallback,
        success_message: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> "CallbackRegistry":
        self._bulk[name] = RegisteredCallback(callback, success_message, error_message)
        logger.debug(f"已登记批量操作回调: {name}")
        return self

    def register_row(
        self,
        name: str,
        callback: RowActionCallback,
        success_message: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> "CallbackRegistry":
        self._row[name] = RegisteredCallback(callback, success_message, error_message)
        logger.debug(f"已登记行操作回调: {name}")
        return self

    def get_bulk(self, name: str) -> Optional[RegisteredCallback]:
        return self._bulk.get(name)

    def get_row(self, name: str) -> Optional[RegisteredCallback]:
        return self._row.get(name)
