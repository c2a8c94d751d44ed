"""Structured logging helpers (identity-safe)."""

from typing import Any


def build_log_context(
    *,
    account_id: str | None = None,
    request_id: str | None = None,
    conversation_id: str | None = None,
    alias: str | None = None,
    route: str | None = None,
    method: str | None = None,
) -> dict[str, Any]:
    """
    Return a log context dict.

    Only ids and aliases are accepted; names, emails and phone numbers
    never reach the logs.
    """
    context: dict[str, Any] = {}
    if account_id:
        context["account_id"] = account_id
    if request_id:
        context["request_id"] = request_id
    if conversation_id:
        context["conversation_id"] = conversation_id
    if alias:
        context["alias"] = alias
    if route:
        context["route"] = route
    if method:
        context["method"] = method
    return context
