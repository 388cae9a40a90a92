"""
Exception Classes - Strongly typed exception hierarchy.

Every error carries typed attributes; HTTP status mapping happens in the API layer.
"""


class KeyManagerError(Exception):
    """Base exception for all key management errors."""

    pass


class UpstreamUnavailableError(KeyManagerError):
    """Raised when LiteLLM is unreachable or returns a non-success on an authoritative read."""

    def __init__(self, operation: str, status_code: int | None = None, detail: str = "") -> None:
        self.operation = operation
        self.status_code = status_code
        self.detail = detail
        message = f"LiteLLM unavailable during {operation}"
        if status_code is not None:
            message += f": status {status_code}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class UpstreamDecodeError(KeyManagerError):
    """Raised when a LiteLLM payload cannot be decoded."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        self.message = message
        super().__init__(f"Failed to decode LiteLLM response for {operation}: {message}")


class IssuanceFailedError(KeyManagerError):
    """Raised when LiteLLM refuses to generate a key."""

    def __init__(self, status_code: int | None, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Failed to generate key: status {status_code}, body: {body}")


class RevocationFailedError(KeyManagerError):
    """Raised when LiteLLM refuses to delete a key."""

    def __init__(self, remote_key_id: str, status_code: int | None, body: str) -> None:
        self.remote_key_id = remote_key_id
        self.status_code = status_code
        self.body = body
        super().__init__(f"Failed to delete key: status {status_code}, body: {body}")


class ProvisionFailedError(KeyManagerError):
    """Raised when a user cannot be created in LiteLLM."""

    def __init__(self, user_id: str, status_code: int | None, body: str) -> None:
        self.user_id = user_id
        self.status_code = status_code
        self.body = body
        super().__init__(
            f"Failed to provision user {user_id}: status {status_code}, body: {body}"
        )


class LimitReachedError(KeyManagerError):
    """Raised when a key creation would exceed a per-user ceiling."""

    def __init__(self, limit_kind: str, limit: int, current: int) -> None:
        self.limit_kind = limit_kind
        self.limit = limit
        self.current = current
        if limit_kind == "long_term":
            label = "Long-term key limit reached"
        else:
            label = "Max active keys limit reached"
        super().__init__(f"{label} ({current}/{limit})")


class KeyNotFoundError(KeyManagerError):
    """Raised when a key is not owned by the requesting user."""

    def __init__(self, user_id: str, remote_key_id: str) -> None:
        self.user_id = user_id
        self.remote_key_id = remote_key_id
        super().__init__(f"Key not found: {remote_key_id}")


class UserNotFoundError(KeyManagerError):
    """Raised when LiteLLM has no record of the user."""

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class InvalidKeyRequestError(KeyManagerError):
    """Raised when a key creation request is malformed."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Invalid key request: {message}")
