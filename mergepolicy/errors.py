from typing import Optional


class MergePolicyError(Exception):
    pass


class ConfigError(MergePolicyError):
    """Raised when a policy document cannot be decoded or validated."""


class EvaluationError(MergePolicyError):
    """A signal could not be evaluated against a pull request."""

    def __init__(self, signal: str, locator: str, cause: Exception):
        self.signal = signal
        self.locator = locator
        self.cause = cause
        super().__init__(f"failed to evaluate signal {signal} for {locator}: {cause}")


class RemoteError(MergePolicyError):
    """A GitHub API call failed at the transport layer or returned an unexpected status."""

    def __init__(self, operation: str, status: Optional[int] = None, message: str = ""):
        self.operation = operation
        self.status = status
        self.message = message
        detail = f"{operation} failed"
        if status is not None:
            detail += f": {status}"
        if message:
            detail += f" {message}"
        super().__init__(detail)
