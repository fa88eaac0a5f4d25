# ============================================================================
# runbook/layout/__init__.py
# tmux pane layouts for Layout and TmuxCommand statements
# ============================================================================

from runbook.layout.engine import LayoutEngine
from runbook.layout.tmux import TmuxHelper, slug

__all__ = ["LayoutEngine", "TmuxHelper", "slug"]
