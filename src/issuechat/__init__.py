"""issuechat - chat-driven Jira issue drafting assistant.

High-level public API:

from issuechat import CommandParser, ConversationEngine, DraftStore, InboundMessage, ThreadKey

engine = ConversationEngine(CommandParser({"backend": "BE"}), DraftStore(), extractor, tracker, chat)
engine.handle(InboundMessage(ThreadKey("C1", "T1"), "m1", "jira criar | BE | Bug | Login quebrado"))

``extractor``, ``tracker`` and ``chat`` are any objects satisfying the
protocols in :mod:`issuechat.collaborators`; :mod:`issuechat.llm` and
:mod:`issuechat.jira_rest` ship HTTP implementations.
"""

from __future__ import annotations

from .adf import markdown_to_adf
from .commands import CommandParser
from .config import AssistantConfig, load_config, load_config_from_env
from .draft_store import DraftStore
from .engine import ConversationEngine
from .jql import fix_precedence, sanitize
from .models import CreatedIssue, DraftSource, InboundMessage, IssueDraft, PendingState, ThreadKey

# Version constant (sync manually with pyproject)
__version__ = "0.1.0"

__all__ = [
    "AssistantConfig",
    "CommandParser",
    "ConversationEngine",
    "CreatedIssue",
    "DraftSource",
    "DraftStore",
    "InboundMessage",
    "IssueDraft",
    "PendingState",
    "ThreadKey",
    "fix_precedence",
    "load_config",
    "load_config_from_env",
    "markdown_to_adf",
    "sanitize",
    "__version__",
]
