# runbook/engine/executor.py
# Handler tables for the walker

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from runbook.base.config import RunbookConfig, get_config

logger = logging.getLogger(__name__)

Handler = Callable[[Any, Any], Awaitable[Any]]


class Executor:
    """
    One async handler per node kind, looked up as ``handle_<kind>``.

    Entity handlers may return ``Disposition.SKIP`` to leave the node's
    children alone. Statement handlers fail by raising StatementFailure or
    by returning False; any other return value is success.
    """

    mode = "base"
    # Whether completed statement positions go to the stored pose
    persists_progress = False

    def __init__(self, config: Optional[RunbookConfig] = None):
        self.config = config or get_config()
        self.walker = None

    def bind(self, walker) -> None:
        self.walker = walker

    def handler_for(self, kind: str) -> Optional[Handler]:
        return getattr(self, f"handle_{kind}", None)

    def output(self, context, message: str) -> None:
        if context.toolbox is not None:
            context.toolbox.output(message)

    def warn(self, context, message: str) -> None:
        if context.toolbox is not None:
            context.toolbox.warn(message)
        else:
            logger.warning(message)
