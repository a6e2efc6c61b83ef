"""
Error classification for registration attempts.

Maps a raised failure to one of the ErrorType tags using keyword patterns on
the error text. Patterns are checked in a fixed precedence; the first match
wins and anything unmatched is ``unknown_error``.
"""

import asyncio
import logging
import re

from registrar.models import ErrorType

logger = logging.getLogger(__name__)

NETWORK_ERROR_PATTERNS = [
    r"timeout",
    r"timed?\s*out",
    r"network",
    r"connection",
    r"ECONNRESET",
    r"ECONNREFUSED",
    r"ENOTFOUND",
    r"ETIMEDOUT",
    r"dns",
    r"getaddrinfo",
    r"name\s*resolution",
]

SERVER_ERROR_PATTERNS = [
    r"\b50[0-4]\b",
    r"server\s*error",
]

RATE_LIMIT_PATTERNS = [
    r"rate\s*limit",
    r"\b429\b",
    r"too\s*many\s*requests",
]

BROWSER_ERROR_PATTERNS = [
    r"page\s*crash",
    r"browser",
    r"navigation",
    r"target\s*closed",
]

SITE_UNAVAILABLE_PATTERNS = [
    r"maintenance",
    r"unavailable",
    r"temporarily",
    r"\bdown\b",
]

CLIENT_ERROR_PATTERNS = [
    r"\b40[0134]\b",
    r"bad\s*request",
    r"unauthori[sz]ed",
    r"forbidden",
]

REGISTRATION_CLOSED_PATTERNS = [
    r"sold\s*out",
    r"\bfull\b",
    r"closed",
    r"expired",
]

# Modules whose exceptions indicate the automation tool itself failed
AUTOMATION_MODULE_PREFIXES = ("playwright", "pyppeteer", "selenium")


def _compile(patterns: list[str]) -> re.Pattern:
    return re.compile("|".join(patterns), re.IGNORECASE)


# Precedence order matters: "connection closed" is a network error, not a
# closed registration.
_RULES: list[tuple[ErrorType, re.Pattern]] = [
    (ErrorType.NETWORK_ERROR, _compile(NETWORK_ERROR_PATTERNS)),
    (ErrorType.SERVER_ERROR, _compile(SERVER_ERROR_PATTERNS)),
    (ErrorType.RATE_LIMIT, _compile(RATE_LIMIT_PATTERNS)),
    (ErrorType.BROWSER_ERROR, _compile(BROWSER_ERROR_PATTERNS)),
    (ErrorType.SITE_UNAVAILABLE, _compile(SITE_UNAVAILABLE_PATTERNS)),
    (ErrorType.CLIENT_ERROR, _compile(CLIENT_ERROR_PATTERNS)),
    (ErrorType.REGISTRATION_CLOSED, _compile(REGISTRATION_CLOSED_PATTERNS)),
]


def classify_error(error: BaseException | str) -> ErrorType:
    """
    Classify a failed attempt into the registration error taxonomy.

    An exception that carries an ``error_type`` attribute holding a taxonomy
    value is trusted as-is. Otherwise the exception type is checked for
    timeouts, connection failures and automation-library crashes, and finally
    the message is matched against the keyword patterns.

    Args:
        error: The raised exception or an error message

    Returns:
        The ErrorType tag for the failure
    """
    explicit = getattr(error, "error_type", None)
    if explicit is not None:
        try:
            return ErrorType(explicit)
        except ValueError:
            pass

    if isinstance(error, BaseException):
        if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
            return ErrorType.NETWORK_ERROR
        if type(error).__module__.startswith(AUTOMATION_MODULE_PREFIXES):
            message = str(error)
            # Automation tools surface timeouts as their own exception types
            if _RULES[0][1].search(message):
                return ErrorType.NETWORK_ERROR
            return ErrorType.BROWSER_ERROR

    message = str(error)
    for error_type, pattern in _RULES:
        if pattern.search(message):
            logger.debug(f"Classified error as {error_type.value}: {message[:100]}")
            return error_type

    logger.debug(f"Classified error as unknown_error: {message[:100]}")
    return ErrorType.UNKNOWN_ERROR


def is_retryable(error_type: ErrorType | str, retryable_errors: list[ErrorType]) -> bool:
    """Check whether an error type is in the configured retryable set."""
    try:
        return ErrorType(error_type) in retryable_errors
    except ValueError:
        return False
