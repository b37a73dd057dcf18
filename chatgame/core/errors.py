"""
Error taxonomy of the game session engine.

Every error carries the HTTP status the API layer answers with. A provider
reply that is not valid protocol JSON is not an error here; it comes back as
an ordinary `type: "error"` action output.
"""


class GameEngineError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class RequestError(GameEngineError):
    """Malformed or contradictory input."""
    status_code = 400


class ConflictError(RequestError):
    """The request does not fit the current session state, e.g. a stale chapter id."""
    status_code = 409


class UnauthorizedError(GameEngineError):
    status_code = 401


class NotFoundError(GameEngineError):
    status_code = 404


class ProviderError(GameEngineError):
    """The LLM or image provider call failed (network, auth, quota, protocol)."""
    status_code = 500


class PersistenceError(GameEngineError):
    status_code = 500
