"""Error taxonomy & redaction helpers.

Every failure inside the drafting workflow resolves to a chat reply, so the
exceptions below are recoverable by design of the conversation: the engine
catches them at the turn boundary and turns them into a message plus a
well-defined state transition.

Public API:
- IssueChatError and its subclasses
- classify_error(exc) -> ErrorInfo
- redact(text) -> str
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import IssueDraft


class IssueChatError(Exception):
    """Base class for all issuechat errors."""


class DraftValidationError(IssueChatError):
    """A draft is missing required fields (project and/or issue type)."""

    def __init__(self, need_project: bool, need_type: bool, draft: IssueDraft | None = None):
        missing = [name for name, flag in (("project", need_project), ("issue_type", need_type)) if flag]
        super().__init__(f"missing required fields: {', '.join(missing) or 'none'}")
        self.need_project = need_project
        self.need_type = need_type
        self.draft = draft


class CommandParseError(IssueChatError):
    """A define command carried no recognizable ``key=value`` pair."""


class PendingNotFoundError(IssueChatError):
    """No pending draft exists for the thread."""

    def __init__(self, action: str):
        super().__init__(f"no pending draft to {action}")
        self.action = action


class ExternalServiceError(IssueChatError):
    """An LLM or ticketing call failed."""

    def __init__(self, message: str, *, service: str = "external", transient: bool = False):
        super().__init__(message)
        self.service = service
        self.transient = transient


# Simple token patterns; extend as new collaborators are wired in
_SENSITIVE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"ATATT[A-Za-z0-9_\-=]{20,}"),  # Atlassian API tokens
    re.compile(r"sk-[A-Za-z0-9_\-]{20,}"),  # OpenAI keys
    re.compile(r"xox[abposr]-[A-Za-z0-9\-]{10,}"),  # Slack tokens
    re.compile(r"(?i)(authorization:\s*(?:basic|bearer)\s+)[A-Za-z0-9+/=._\-]+"),
]

_REDACTION_PLACEHOLDER = "<redacted>"


@dataclass
class ErrorInfo:
    category: str
    message: str
    original_type: str
    transient: bool = False
    details: dict[str, Any] | None = None


def redact(text: str) -> str:
    """Redact sensitive tokens in arbitrary text."""
    if not text:
        return text
    redacted = text
    for pat in _SENSITIVE_PATTERNS:
        if pat.groups:
            redacted = pat.sub(lambda m: m.group(1) + _REDACTION_PLACEHOLDER, redacted)
        else:
            redacted = pat.sub(_REDACTION_PLACEHOLDER, redacted)
    return redacted


def classify_error(exc: BaseException) -> ErrorInfo:
    """Best-effort classification of an exception.

    - HTTP 429 / rate limit wording -> 'jira.rate_limit', transient
    - network-ish keywords -> 'network', transient
    - JSON decoding failures from model output -> 'llm.parse'
    - fallback -> 'generic' (transient if the exception says so)
    """
    msg = str(exc) if exc else ""
    low = msg.lower()
    name = exc.__class__.__name__

    if "rate limit" in low or "status=429" in low or "too many requests" in low:
        return ErrorInfo("jira.rate_limit", redact(msg), name, transient=True)
    if any(k in low for k in ("timeout", "timed out", "connection reset", "temporarily unavailable")):
        return ErrorInfo("network", redact(msg), name, transient=True)
    if "bad issue json" in low or "bad issues json" in low or "jsondecodeerror" in low:
        return ErrorInfo("llm.parse", redact(msg), name)
    transient = bool(getattr(exc, "transient", False))
    return ErrorInfo("generic", redact(msg), name, transient=transient)


__all__ = [
    "IssueChatError",
    "DraftValidationError",
    "CommandParseError",
    "PendingNotFoundError",
    "ExternalServiceError",
    "ErrorInfo",
    "classify_error",
    "redact",
]
