"""Session layer: open-note coordination, autosave, recording and routing."""

from .autosave import AutosaveScheduler
from .control_surface import ControlSurface
from .coordinator import SessionClosedError, SessionCoordinator, SessionSnapshot
from .model_acquisition import ModelAcquisition
from .recording import RecordingStateError, RecordingStateMachine
from .registry import ActionKind, ActionRegistry, RegistrationToken
from .workspace import NotesWorkspace

__all__ = [
    "ActionKind",
    "ActionRegistry",
    "AutosaveScheduler",
    "ControlSurface",
    "ModelAcquisition",
    "NotesWorkspace",
    "RecordingStateError",
    "RecordingStateMachine",
    "RegistrationToken",
    "SessionClosedError",
    "SessionCoordinator",
    "SessionSnapshot",
]
