"""State authority: panel state, staleness and resynchronization."""

from .collaborators import EditorSurface, JsonPanelStore, PanelStore, PatternEvaluator, SilentEvaluator
from .models import MASTER_PANEL_ID, MasterUnit, Panel, SliderWidget, StateSnapshot
from .resync import RemoteStatus, RemoteView, ResyncCoordinator
from .staleness import PanelPhase, StalenessTracker
from .state import SliderScope, StateAuthority

__all__ = [
    "MASTER_PANEL_ID",
    "EditorSurface",
    "JsonPanelStore",
    "MasterUnit",
    "Panel",
    "PanelPhase",
    "PanelStore",
    "PatternEvaluator",
    "RemoteStatus",
    "RemoteView",
    "ResyncCoordinator",
    "SilentEvaluator",
    "SliderScope",
    "SliderWidget",
    "StalenessTracker",
    "StateAuthority",
    "StateSnapshot",
]
