"""Interfaces of the services the conversation engine depends on.

Production adapters live in :mod:`issuechat.jira_rest` and
:mod:`issuechat.llm`; the chat platform transport is supplied by the host
application. Tests substitute in-memory fakes.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from .models import CreatedIssue, IssueDraft, ThreadKey


@dataclass
class ExtractionContext:
    instruction: str
    thread_history: str = ""
    example_issues: list[str] = field(default_factory=list)
    project_aliases: Mapping[str, str] = field(default_factory=dict)


class DraftExtractor(Protocol):
    def extract_draft(self, context: ExtractionContext) -> IssueDraft: ...

    def extract_drafts(self, context: ExtractionContext) -> list[IssueDraft]: ...

    def confirm_create_intent(self, text: str) -> bool: ...


class IssueTracker(Protocol):
    def create_issue(self, draft: IssueDraft, description: Mapping[str, Any]) -> CreatedIssue: ...

    def search(self, jql: str, limit: int = 20) -> list[dict[str, Any]]: ...


class ChatTransport(Protocol):
    def post_reply(self, thread: ThreadKey, text: str) -> None: ...

    def permalink(self, channel_id: str, message_id: str) -> str | None: ...


__all__ = ["ExtractionContext", "DraftExtractor", "IssueTracker", "ChatTransport"]
