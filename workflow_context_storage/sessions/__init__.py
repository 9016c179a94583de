"""
Session persistence.

Keyed session records written through the dual-backend coordinator, with an
auto-save policy, checkpoints and next-step hints for resumed sessions.
"""

from .autosave import AutoSaveDecision, nodes_changed, should_auto_save
from .hints import build_next_step_hint
from .store import SessionStore

__all__ = [
    "SessionStore",
    "AutoSaveDecision",
    "should_auto_save",
    "nodes_changed",
    "build_next_step_hint",
]
