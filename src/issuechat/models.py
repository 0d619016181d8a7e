from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, NamedTuple


def _unique(values: Iterable[str]) -> list[str]:
    out: list[str] = []
    for value in values:
        token = str(value).strip()
        if token and token not in out:
            out.append(token)
    return out


@dataclass
class IssueDraft:
    """In-progress ticket description awaiting user confirmation.

    ``project`` and ``issue_type`` may be empty while the conversation is
    still collecting them; both must be filled before submission.
    """

    project: str = ""
    issue_type: str = ""
    summary: str = ""
    description: str = ""
    priority: str = ""
    labels: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.labels = _unique(self.labels or [])

    def set_labels(self, values: Iterable[str]) -> None:
        """Replace labels, keeping first-seen order without duplicates."""
        self.labels = _unique(values)

    def missing_fields(self) -> tuple[bool, bool]:
        """Return ``(need_project, need_type)``."""
        return (not self.project.strip(), not self.issue_type.strip())

    def is_complete(self) -> bool:
        need_project, need_type = self.missing_fields()
        return not (need_project or need_type)

    def stripped(self) -> IssueDraft:
        return replace(
            self,
            project=self.project.strip(),
            issue_type=self.issue_type.strip(),
            summary=self.summary.strip(),
            description=self.description.strip(),
            priority=self.priority.strip(),
            labels=list(self.labels),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "project": self.project,
            "issue_type": self.issue_type,
            "summary": self.summary,
            "description": self.description,
            "priority": self.priority,
            "labels": list(self.labels),
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> IssueDraft:
        labels_any = data.get("labels")
        labels: list[str] = []
        if isinstance(labels_any, str):
            labels = [p.strip() for p in labels_any.split(",") if p.strip()]
        elif isinstance(labels_any, list):
            labels = [str(p) for p in labels_any]
        return cls(
            project=str(data.get("project") or "").strip(),
            issue_type=str(data.get("issue_type") or "").strip(),
            summary=str(data.get("summary") or "").strip(),
            description=str(data.get("description") or "").strip(),
            priority=str(data.get("priority") or "").strip(),
            labels=labels,
        )


class ThreadKey(NamedTuple):
    """Composite identity of a conversation thread."""

    channel_id: str
    thread_id: str


class DraftSource(str, enum.Enum):
    EXPLICIT = "explicit"
    NATURAL_LANGUAGE = "natural_language"
    THREAD_BASED = "thread_based"


@dataclass
class PendingState:
    created_at: float
    thread: ThreadKey
    origin_message_id: str
    original_text: str
    source: DraftSource
    draft: IssueDraft = field(default_factory=IssueDraft)
    # multi-card mode; when non-empty the queue, not ``draft``, drives confirm
    draft_queue: list[IssueDraft] = field(default_factory=list)
    need_project: bool = False
    need_type: bool = False

    @property
    def is_multi_card(self) -> bool:
        return bool(self.draft_queue)


@dataclass
class InboundMessage:
    thread: ThreadKey
    message_id: str
    text: str
    original_text: str = ""
    thread_history: str = ""

    def __post_init__(self) -> None:
        if not self.original_text:
            self.original_text = self.text


@dataclass
class CreatedIssue:
    key: str
    id: str = ""
    url: str = ""


__all__ = [
    "IssueDraft",
    "ThreadKey",
    "DraftSource",
    "PendingState",
    "InboundMessage",
    "CreatedIssue",
]
