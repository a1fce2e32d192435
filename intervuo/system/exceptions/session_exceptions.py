class SessionError(Exception):
    """Misuse of a session controller (wrong state, bad handle)."""


class HandleAlreadyConsumed(SessionError):
    def __init__(self, call_id: str):
        self.call_id = call_id
        super().__init__(f"Session handle {call_id} was already used for a completed call")


class ConnectionFailure(Exception):
    """The call never reached an active state."""


class NoSessionIdentifier(Exception):
    """Results cannot be handed off without an interview identifier."""


class AnalysisFailed(Exception):
    """The analysis relay returned an error or an unusable payload."""


class VoiceAgentError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
