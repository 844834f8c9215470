# universe_terminal/errors.py


class UniverseTerminalError(Exception):
    """Base class for errors surfaced to callers of the session engine."""
    pass


class SessionNotFoundError(UniverseTerminalError):
    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class TabNotFoundError(UniverseTerminalError):
    def __init__(self, session_id: str, tab_id: str):
        super().__init__(f"Tab not found: {tab_id} (session {session_id})")
        self.session_id = session_id
        self.tab_id = tab_id


class ConfigurationError(UniverseTerminalError):
    """Raised when the mandatory default configuration cannot be loaded."""
    pass
