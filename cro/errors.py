from __future__ import annotations


class CroError(Exception):
    pass


class InvalidPropertyError(CroError):
    """A property in the event's bag is missing or malformed."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"invalid property {field}: {message}")


class UnsupportedResourceError(CroError):
    def __init__(self, kind: str, action: str):
        self.kind = kind
        self.action = action
        super().__init__(f"unsupported resource event: {action} {kind}")


class DependencyFetchError(CroError):
    pass


class UpstreamError(CroError):
    """The orchestration API rejected or failed a call."""

    def __init__(self, message: str, code: str | None = None):
        self.code = code
        super().__init__(message)


class UpstreamNotFoundError(UpstreamError):
    pass


class ScaleViolationError(CroError):
    def __init__(self, max_concurrency: int, requested: int):
        self.max_concurrency = max_concurrency
        self.requested = requested
        super().__init__(
            f"max process concurrency is {max_concurrency}, "
            f"can't scale rack below {max_concurrency + 1} instances"
        )
