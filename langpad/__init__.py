"""langpad: a grammar playground with live-regenerated language tooling."""

from .errors import (
    LangpadError,
    LanguageClientMissing,
    PlaygroundSetupError,
    SessionError,
    WorkerError,
    WorkerStartError,
)
from .orchestrator import DEFINITION_KEY, SAMPLE_KEY, Playground, PlaygroundParameters, setup_playground
from .scheduler import DebouncedScheduler
from .session import PlaygroundState, SessionHandle, SessionLifecycleManager, SessionStatus
from .worker import WorkerHandle, spawn_definition_session, spawn_session

__version__ = "0.1.0"
