from __future__ import annotations


class RetortError(RuntimeError):
    """Base error for failures that end the current invocation."""

    code = "RETORT_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class NotFoundError(RetortError):
    """A tag, message or file does not exist."""

    code = "NOT_FOUND"


class AmbiguousMatchError(RetortError):
    """A SEARCH block matched the target file more than once."""

    code = "AMBIGUOUS"

    def __init__(self, path: str, occurrences: int) -> None:
        super().__init__(
            f"SEARCH block appears {occurrences} times in file {path}. "
            "Ambiguous which one to replace."
        )
        self.path = path
        self.occurrences = occurrences


class InvalidRequestError(RetortError):
    """Conflicting options or a malformed target."""

    code = "INVALID"


class ExternalToolError(RetortError):
    """An external command (git) exited unsuccessfully."""

    code = "EXTERNAL_TOOL_FAILURE"

    def __init__(self, message: str, returncode: int | None = None) -> None:
        super().__init__(message)
        self.returncode = returncode


class UnauthorizedPathError(RetortError):
    """A proposed edit targets a file outside the project root."""

    code = "UNAUTHORIZED"


class ProviderError(RetortError):
    """A model provider call failed; ``code`` says how."""

    code = "PROVIDER_ERROR"

    def __init__(
        self,
        code: str,
        message: str,
        retryable: bool = False,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, code)
        self.retryable = retryable
        self.status_code = status_code
