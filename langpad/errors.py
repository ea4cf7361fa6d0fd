# langpad/errors.py

class LangpadError(Exception):
    """Base class for every error raised by langpad."""


class WorkerError(LangpadError):
    """A worker channel failed, or the worker answered a request with an error."""


class WorkerStartError(WorkerError):
    """The worker handshake was rejected or the worker died before it was ready."""


class SessionError(LangpadError):
    """A session could not be assembled or torn down."""


class LanguageClientMissing(SessionError):
    """A session reported a successful start but exposes no language client."""


class PlaygroundSetupError(LangpadError):
    """The definition session could not be brought up; the playground cannot run."""
