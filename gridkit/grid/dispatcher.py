#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
操作分发

把操作名和原始请求参数转换为对具体处理方法的调用，
并保证任何异常都以失败结果返回，不会越过这一层。
"""

from typing import Any, Callable, Dict, Mapping, Optional

from gridkit.common.exceptions import GridKitError
from gridkit.common.logging_utils import get_logger
from gridkit.grid.actions import GridAction, parse_request
from gridkit.grid.results import GridResult

logger = get_logger(__name__)


class ActionDispatcher:
    """操作分发器

    grid 需提供 fetch_data、fetch_aggregations 和 mutations（MutationHandler）。

    异常处理：
    --------
    - GridKitError（校验失败、未知操作、数据库错误）：以异常消息作为失败消息
    - 其它异常：记录完整堆栈，返回通用失败消息
    """

    def __init__(self, grid):
        self.grid = grid
        mutations = grid.mutations
        self.handlers: Dict[GridAction, Callable[[Any], GridResult]] = {
            GridAction.FETCH_DATA: grid.fetch_data,
            GridAction.FETCH_RECORD: mutations.fetch_record,
            GridAction.ADD_RECORD: mutations.add_record,
            GridAction.EDIT_RECORD: mutations.edit_record,
            GridAction.DELETE_RECORD: mutations.delete_record,
            GridAction.BULK_ACTION: mutations.bulk_action,
            GridAction.INLINE_EDIT: mutations.inline_edit,
            GridAction.UPLOAD_FILE: mutations.upload_file,
            GridAction.ACTION_CALLBACK: mutations.action_callback,
            GridAction.FETCH_AGGREGATIONS: grid.fetch_aggregations,
            GridAction.FETCH_SELECT2_OPTIONS: mutations.fetch_lookup_options,
        }

    def dispatch(self, action: Any, raw: Optional[Mapping[str, Any]] = None) -> GridResult:
        try:
            grid_action, params = parse_request(action, raw)
            logger.debug(f"处理操作: {grid_action.value}")
            return self.handlers[grid_action](params)
        except GridKitError as e:
            logger.warning(f"操作 {action} 失败: {e}")
            return GridResult.fail(str(e))
        except Exception as e:
            logger.exception(f"操作 {action} 出现未预期的错误: {e}")
            return GridResult.fail("操作失败，请稍后重试")
