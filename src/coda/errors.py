from __future__ import annotations

import logging
from typing import Any

from coda.logging_utils import is_dev_mode

logger = logging.getLogger(__name__)


class CodaError(Exception):
    """Base class for every error delivered to an ``on_error`` continuation."""


class JavaScriptError(CodaError):
    def __init__(self, fragment: str, message: str) -> None:
        super().__init__(f"Error evaluating JavaScript: {message}")
        self.fragment = fragment
        self.message = message

    def describe(self) -> str:
        return (
            "Evaluation of JavaScript string produced an error:\n"
            f"    {self.message}\n"
            f"    JavaScript string: {self.fragment}"
        )


class PromiseRejectedError(CodaError):
    def __init__(self, context: dict[str, str]) -> None:
        super().__init__(f"Runtime rejected promise: {context}")
        self.context = context


class DecodingError(CodaError):
    def __init__(self, expected: str, strategy: str, underlying: Exception | None = None) -> None:
        detail = f": {underlying}" if underlying is not None else ""
        super().__init__(f"Failed to decode response as {expected} using {strategy}{detail}")
        self.expected = expected
        self.strategy = strategy
        self.underlying = underlying


class RequestError(CodaError):
    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        errors: list[dict[str, Any]] | None = None,
        underlying: Exception | None = None,
    ) -> None:
        if message is None:
            if status_code is not None:
                message = f"URL request failed with status code {status_code}"
            elif errors:
                message = f"URL request returned errors: {errors}"
            elif underlying is not None:
                message = f"URL request failed: {underlying}"
            else:
                message = "URL request failed"
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors
        self.underlying = underlying


class NavigationError(CodaError):
    def __init__(self, underlying: Any) -> None:
        super().__init__(f"Runtime page navigation failed: {underlying}")
        self.underlying = underlying


class LoadingError(CodaError):
    pass


class LoadTimeoutError(LoadingError):
    def __init__(self, timeout_sec: float) -> None:
        super().__init__(f"Runtime was not loaded after a timeout of {timeout_sec:g} seconds")
        self.timeout_sec = timeout_sec


class EmptyResponseError(CodaError):
    def __init__(self) -> None:
        super().__init__("Request returned no items")


class ConfigurationError(CodaError):
    """Startup misconfiguration that leaves no way to make progress."""


def default_error_handler(error: BaseException) -> None:
    if is_dev_mode():
        logger.error("unhandled bridge error: %r", error, exc_info=error)
        return
    logger.error("unhandled bridge error: %s", error)
