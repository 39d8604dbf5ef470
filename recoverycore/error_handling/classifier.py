"""
Error Classifier
===============

Pure functions mapping a raw error and its call context to a severity and a
category. Keyword matching runs in priority order and the first match wins.
"""

from typing import Any, Mapping, Optional

from .models import ErrorCategory, ErrorSeverity

# Checked top to bottom
SEVERITY_PATTERNS = [
    (ErrorSeverity.CRITICAL, ["critical", "fatal", "database"]),
    (ErrorSeverity.HIGH, ["timeout", "network", "auth"]),
    (ErrorSeverity.MEDIUM, ["validation", "rate limit"]),
]

# (category, message keyword, code fragment)
CATEGORY_PATTERNS = [
    (ErrorCategory.NETWORK, "network", "NETWORK"),
    (ErrorCategory.AUTHENTICATION, "auth", "AUTH"),
    (ErrorCategory.RATE_LIMIT, "rate", "RATE"),
    (ErrorCategory.TIMEOUT, "timeout", "TIMEOUT"),
    (ErrorCategory.DATABASE, "database", "DB"),
]

COMPONENT_CATEGORIES = {
    "content_generation": ErrorCategory.CONTENT_GENERATION,
    "link_discovery": ErrorCategory.LINK_DISCOVERY,
    "posting": ErrorCategory.POSTING,
}


def get_error_message(error: Any) -> str:
    """Extract a message from an exception or an error mapping."""
    if isinstance(error, Mapping):
        return str(error.get("message") or "")
    return str(error)


def get_error_code(error: Any) -> str:
    """Extract an error code, empty string when the error has none."""
    if isinstance(error, Mapping):
        code = error.get("code")
    else:
        code = getattr(error, "code", None)
    return str(code) if code is not None else ""


def classify_error_severity(error: Any) -> ErrorSeverity:
    """Classify error severity from its message."""
    message = get_error_message(error).lower()

    for severity, patterns in SEVERITY_PATTERNS:
        if any(p in message for p in patterns):
            return severity

    return ErrorSeverity.LOW


def _declared_category(error: Any) -> Optional[ErrorCategory]:
    if isinstance(error, Mapping):
        category = error.get("category")
    else:
        category = getattr(error, "category", None)

    if isinstance(category, ErrorCategory):
        return category
    if isinstance(category, str):
        try:
            return ErrorCategory(category)
        except ValueError:
            return None
    return None


def categorize_error(error: Any, context: Optional[Mapping[str, Any]] = None) -> ErrorCategory:
    """
    Categorize an error.

    An explicit category carried by the error wins. Otherwise message keywords
    and code fragments are checked in priority order, then the reporting
    component's own domain, then ``infrastructure``.
    """
    declared = _declared_category(error)
    if declared is not None:
        return declared

    message = get_error_message(error).lower()
    code = get_error_code(error)

    for category, keyword, code_fragment in CATEGORY_PATTERNS:
        if keyword in message or code_fragment in code:
            return category

    component = (context or {}).get("component")
    return COMPONENT_CATEGORIES.get(component, ErrorCategory.INFRASTRUCTURE)
