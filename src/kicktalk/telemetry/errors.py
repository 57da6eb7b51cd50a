"""Error classification for the `errors` metric.

Every recorded error is sorted into one of a fixed set of categories, each
with a severity and the recovery actions a caller may try. The category and
severity become attributes on the `errors` counter, so dashboards can
split error rates without parsing messages.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ErrorCategory:
    name: str
    code: str
    description: str
    severity: str
    recovery_actions: tuple[str, ...]


NETWORK = "NETWORK"
WEBSOCKET = "WEBSOCKET"
API = "API"
PARSING = "PARSING"
AUTH = "AUTH"
SEVENTV = "SEVENTV"
RENDER = "RENDER"
STORAGE = "STORAGE"

ERROR_CATEGORIES: dict[str, ErrorCategory] = {
    category.name: category
    for category in (
        ErrorCategory(NETWORK, "NET", "Network connectivity failures", "high", ("retry", "fallback")),
        ErrorCategory(WEBSOCKET, "WS", "Chat websocket failures", "high", ("reconnect", "fallback")),
        ErrorCategory(API, "API", "Kick API request failures", "medium", ("retry", "cache")),
        ErrorCategory(PARSING, "PARSE", "Malformed payloads", "low", ("skip", "log")),
        ErrorCategory(AUTH, "AUTH", "Authentication and authorization failures", "critical",
                      ("reauthenticate", "logout")),
        ErrorCategory(SEVENTV, "7TV", "7TV emote service failures", "medium", ("retry", "disable_7tv")),
        ErrorCategory(RENDER, "RENDER", "UI rendering failures", "low", ("rerender", "fallback_ui")),
        ErrorCategory(STORAGE, "STORAGE", "Local storage failures", "medium", ("clear_cache", "fallback")),
    )
}

# Unclassified errors are most often transport problems
DEFAULT_CATEGORY = NETWORK

_NETWORK_CODES = {"ECONNREFUSED", "ECONNRESET", "ENOTFOUND", "ETIMEDOUT", "EAI_AGAIN"}
_AUTH_CODES = {401, 403}
_WS_WORD = re.compile(r"\bws\b")
_API_WORD = re.compile(r"\bapi\b")


def _field(error: Any, name: str) -> Any:
    if isinstance(error, Mapping):
        return error.get(name)
    return getattr(error, name, None)


def _message(error: Any) -> str:
    if isinstance(error, str):
        return error.lower()
    message = _field(error, "message")
    if message is None and isinstance(error, BaseException):
        message = str(error)
    return str(message or "").lower()


def error_name(error: Any) -> str:
    """The error's type name ("RenderError", "ValueError") or the string itself."""
    if isinstance(error, str):
        return error
    name = _field(error, "name")
    if isinstance(name, str) and name:
        return name
    return type(error).__name__


def error_code(error: Any) -> str:
    """The error's code (HTTP status or errno name), or "unknown"."""
    code = _field(error, "code")
    if code is None:
        code = _field(error, "status_code")
    return "unknown" if code is None else str(code)


def classify_error(error: Any, context: Mapping[str, Any] | None = None) -> str:
    """Return the category name for an error.

    Args:
        error: An exception, a mapping with "code"/"message"/"name" keys,
            a plain string, or None.
        context: Where it happened; "component" and "operation" are used.
    """
    if error is None:
        return DEFAULT_CATEGORY

    context = context or {}
    component = str(context.get("component") or "").lower()
    operation = str(context.get("operation") or "").lower()
    message = _message(error)
    name = error_name(error)
    code = _field(error, "code")
    if code is None:
        code = _field(error, "status_code")

    if code in _AUTH_CODES or any(word in message for word in ("unauthorized", "forbidden", "authentication")):
        return AUTH
    if component in ("7tv", "seventv") or "7tv" in message:
        return SEVENTV
    if component == "websocket" or "websocket" in message or _WS_WORD.search(message):
        return WEBSOCKET
    if (
        code in _NETWORK_CODES
        or isinstance(error, (ConnectionError, TimeoutError))
        or any(word in message for word in ("network", "fetch", "timeout"))
    ):
        return NETWORK
    if (isinstance(code, int) and code >= 400) or operation.startswith("api") or _API_WORD.search(message):
        return API
    if isinstance(error, (SyntaxError, json.JSONDecodeError)) or name == "SyntaxError" or "parse" in message:
        return PARSING
    if "render" in name.lower() or component in ("renderer", "render"):
        return RENDER
    if "storage" in message or "quota" in message:
        return STORAGE
    return DEFAULT_CATEGORY
