"""Conversation state machine for multi-turn issue drafting.

Per thread the conversation is in one of four states:

- Idle: nothing stored for the thread
- AwaitingFields: a pending draft exists, project and/or type missing
- AwaitingConfirmation: a complete pending draft awaits ``confirmar``
- Terminal: the pending draft was submitted or cancelled (entry deleted)

``ConversationEngine.handle`` evaluates one inbound message and returns
``True`` when it belonged to a drafting flow. ``False`` hands the message back
to the caller (question answering, search, ...). Every failure path ends in a
chat reply; no exception escapes ``handle`` for LLM or ticketing errors.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import replace

from . import messages
from .adf import markdown_to_adf
from .collaborators import ChatTransport, DraftExtractor, ExtractionContext, IssueTracker
from .commands import CommandParser
from .draft_store import DraftStore
from .errors import (
    CommandParseError,
    DraftValidationError,
    ExternalServiceError,
    IssueChatError,
    PendingNotFoundError,
    classify_error,
    redact,
)
from .jql import default_for_intent, sanitize
from .logging import StructuredLogger, get_logger
from .models import CreatedIssue, DraftSource, InboundMessage, IssueDraft, PendingState, ThreadKey

EXAMPLE_ISSUES_LIMIT = 3


class ConversationEngine:
    def __init__(
        self,
        parser: CommandParser,
        store: DraftStore,
        extractor: DraftExtractor,
        tracker: IssueTracker,
        chat: ChatTransport,
        *,
        create_enabled: bool = True,
        project_keys: Sequence[str] = (),
        bot_name: str = "jarvis",
        clock: Callable[[], float] = time.time,
        logger: StructuredLogger | None = None,
    ) -> None:
        self.parser = parser
        self.store = store
        self.extractor = extractor
        self.tracker = tracker
        self.chat = chat
        self.create_enabled = create_enabled
        self.project_keys = list(project_keys)
        self.bot_name = bot_name
        self._clock = clock
        self.logger = logger or get_logger()

    @property
    def default_summary(self) -> str:
        return f"Card criado via {self.bot_name.capitalize()}"

    # --- entry point ------------------------------------------------------
    def handle(self, message: InboundMessage) -> bool:
        q = message.text.strip()
        if not q:
            return False
        with self.logger.timed_operation(
            "handle_message",
            channel_id=message.thread.channel_id,
            thread_id=message.thread.thread_id,
        ):
            try:
                return self._dispatch(message, q)
            except (PendingNotFoundError, CommandParseError, DraftValidationError) as exc:
                self.logger.log_draft_action("rejected", message.thread, reason=str(exc))
                self._reply(message.thread, self._reply_for(exc))
                return True

    def _reply_for(self, exc: IssueChatError) -> str:
        if isinstance(exc, PendingNotFoundError):
            if exc.action == "define":
                return messages.NOTHING_TO_DEFINE.format(bot=self.bot_name)
            return messages.NOTHING_TO_CONFIRM
        if isinstance(exc, DraftValidationError):
            draft = exc.draft or IssueDraft()
            return messages.missing_fields(draft, exc.need_project, exc.need_type, self.bot_name)
        return messages.DEFINE_USAGE.format(bot=self.bot_name)

    def _dispatch(self, message: InboundMessage, q: str) -> bool:  # noqa: PLR0911
        explicit, draft = self.parser.parse_explicit_create(q)
        control = self.parser.is_define(q) or self.parser.is_confirm(q) or self.parser.is_cancel(q)
        thread_based = not control and self.parser.is_thread_based_create(q)
        natural = not control and self.parser.looks_like_create_intent(q)

        if (explicit or thread_based or natural) and not self.create_enabled:
            self._reply(message.thread, messages.CREATE_DISABLED)
            return True
        if explicit:
            return self._handle_explicit(message, draft)
        if thread_based:
            if not self.extractor.confirm_create_intent(q):
                self.logger.info("create intent rejected; deferring", flow="thread_based")
                return False
            return self._handle_thread_based(message, q)
        if natural:
            if not self.extractor.confirm_create_intent(q):
                self.logger.info("create intent rejected; deferring", flow="natural_language")
                return False
            return self._handle_natural_language(message, q)
        if self.parser.is_define(q):
            return self._handle_define(message, q)
        if self.parser.is_confirm(q):
            return self._handle_confirm(message)
        if self.parser.is_cancel(q):
            return self._handle_cancel(message)
        return False

    # --- creation flows ---------------------------------------------------
    def _handle_explicit(self, message: InboundMessage, draft: IssueDraft) -> bool:
        if not draft.summary.strip():
            draft.summary = self.default_summary
        if not draft.is_complete():
            self._save_pending(message, DraftSource.EXPLICIT, draft)
            return True
        self._submit(message.thread, draft, message.message_id, message.original_text)
        return True

    def _handle_thread_based(self, message: InboundMessage, q: str) -> bool:
        project = self.parser.parse_project_key(q)
        issue_type = self.parser.parse_issue_type(q)

        if self.parser.is_multi_card_create(q):
            context = self._context(message, q, [])
            try:
                drafts = self.extractor.extract_drafts(context)
                if not drafts:
                    raise ExternalServiceError("nenhum card retornado", service="llm")
            except ExternalServiceError as exc:
                self._report_failure(message.thread, messages.EXTRACTION_MULTI_FAILED, exc)
                return True
            drafts = [self._override(d, project, issue_type) for d in drafts]
            for n, d in enumerate(drafts, start=1):
                if not d.summary.strip():
                    d.summary = f"Card {n} gerado a partir de thread"
            state = self._new_state(message, DraftSource.THREAD_BASED, IssueDraft(), drafts)
            self.store.save(state)
            self.logger.log_draft_action(
                "saved", message.thread, source=state.source.value, cards=len(drafts)
            )
            self._reply(message.thread, messages.preview_drafts(drafts, self.bot_name))
            return True

        context = self._context(message, q, self._example_issues(project, issue_type))
        try:
            draft = self.extractor.extract_draft(context)
        except ExternalServiceError as exc:
            self._report_failure(message.thread, messages.EXTRACTION_FAILED, exc)
            return True
        draft = self._override(draft, project, issue_type)
        if not draft.summary.strip():
            draft.summary = self.default_summary
        state = self._save_pending(message, DraftSource.THREAD_BASED, draft)
        if not (state.need_project or state.need_type):
            self._reply(message.thread, messages.preview_draft(draft, True, self.bot_name))
        return True

    def _handle_natural_language(self, message: InboundMessage, q: str) -> bool:
        project = self.parser.parse_project_key(q)
        issue_type = self.parser.parse_issue_type(q)
        summary = self.parser.parse_summary(q)
        context = self._context(message, q, self._example_issues(project, issue_type))
        try:
            draft = self.extractor.extract_draft(context)
        except ExternalServiceError as exc:
            self._report_failure(message.thread, messages.EXTRACTION_FAILED, exc)
            return True
        # fields typed by the user win over extracted ones
        draft = self._override(draft, project, issue_type)
        if summary:
            draft.summary = summary
        if not draft.summary.strip():
            draft.summary = self.default_summary
        if not draft.is_complete():
            self._save_pending(message, DraftSource.NATURAL_LANGUAGE, draft)
            return True
        self._submit(message.thread, draft, message.message_id, message.original_text)
        return True

    # --- follow-up commands -----------------------------------------------
    def _handle_define(self, message: InboundMessage, q: str) -> bool:
        state = self.store.load(message.thread)
        if state is None:
            raise PendingNotFoundError("define")
        drafts = state.draft_queue if state.is_multi_card else [state.draft]
        updated = any([self.parser.apply_define(q, d) for d in drafts])
        if not updated:
            raise CommandParseError(f"no key=value pair in {q!r}")
        for draft in drafts:
            if not draft.summary.strip():
                draft.summary = self.default_summary

        need_project, need_type, incomplete = self._missing(state)
        state.need_project, state.need_type = need_project, need_type
        self.store.save(state)
        self.logger.log_draft_action(
            "defined", message.thread, need_project=need_project, need_type=need_type
        )
        if need_project or need_type:
            self._reply(
                message.thread,
                messages.missing_fields(incomplete, need_project, need_type, self.bot_name),
            )
        elif state.is_multi_card:
            self._reply(message.thread, messages.preview_drafts(state.draft_queue, self.bot_name))
        else:
            self._reply(message.thread, messages.preview_draft(state.draft, True, self.bot_name))
        return True

    def _handle_confirm(self, message: InboundMessage) -> bool:
        state = self.store.load(message.thread)
        if state is None:
            raise PendingNotFoundError("confirm")
        need_project, need_type, incomplete = self._missing(state)
        if need_project or need_type:
            raise DraftValidationError(need_project, need_type, incomplete)

        if not state.is_multi_card:
            issue = self._submit(
                message.thread, state.draft, state.origin_message_id, state.original_text
            )
            if issue is not None:
                self.store.delete(message.thread)
            return True

        # The queue is claimed up front; a mid-batch failure does not put the
        # unsent remainder back, so the user has to start the flow over.
        self.store.delete(message.thread)
        total = len(state.draft_queue)
        for n, draft in enumerate(state.draft_queue, start=1):
            self.logger.info(
                "multi-card submit", index=n, total=total, project=draft.project, summary=draft.summary
            )
            if self._submit(message.thread, draft, state.origin_message_id, state.original_text) is None:
                self.logger.log_draft_action("batch_aborted", message.thread, index=n, total=total)
                self._reply(message.thread, messages.BATCH_ABORTED.format(index=n, total=total))
                return True
        self.logger.log_draft_action("batch_created", message.thread, total=total)
        return True

    def _handle_cancel(self, message: InboundMessage) -> bool:
        if self.store.load(message.thread) is None:
            return False
        self.store.delete(message.thread)
        self.logger.log_draft_action("cancelled", message.thread)
        self._reply(message.thread, messages.CANCELLED)
        return True

    # --- queries ----------------------------------------------------------
    def listing_query(self, intent: str, question: str) -> str:
        """Canned JQL for ``intent`` scoped to the configured projects."""
        return sanitize(default_for_intent(intent, question, self.project_keys))

    # --- helpers ----------------------------------------------------------
    def _submit(
        self,
        thread: ThreadKey,
        draft: IssueDraft,
        origin_message_id: str,
        original_text: str,
    ) -> CreatedIssue | None:
        d = self._with_origin(draft, thread, origin_message_id, original_text).stripped()
        if not d.summary:
            d.summary = self.default_summary
        if not d.is_complete():
            need_project, need_type = d.missing_fields()
            raise DraftValidationError(need_project, need_type, d)
        document = markdown_to_adf(d.description)
        try:
            issue = self.tracker.create_issue(d, document)
        except ExternalServiceError as exc:
            self._report_failure(thread, messages.CREATE_FAILED, exc)
            return None
        self.logger.log_draft_action("created", thread, issue_key=issue.key, project=d.project)
        self._reply(thread, messages.created(issue))
        return issue

    def _with_origin(
        self, draft: IssueDraft, thread: ThreadKey, origin_message_id: str, original_text: str
    ) -> IssueDraft:
        origin_link = self.chat.permalink(thread.channel_id, origin_message_id)
        thread_link = None
        if thread.thread_id and thread.thread_id != origin_message_id:
            thread_link = self.chat.permalink(thread.channel_id, thread.thread_id)
        description = messages.origin_footer(
            draft.description, origin_link, origin_message_id, thread_link, original_text
        )
        return replace(draft, description=description, labels=list(draft.labels))

    def _save_pending(
        self, message: InboundMessage, source: DraftSource, draft: IssueDraft
    ) -> PendingState:
        state = self._new_state(message, source, draft, [])
        self.store.save(state)
        self.logger.log_draft_action(
            "saved",
            message.thread,
            source=source.value,
            need_project=state.need_project,
            need_type=state.need_type,
        )
        if state.need_project or state.need_type:
            self._reply(
                message.thread,
                messages.missing_fields(draft, state.need_project, state.need_type, self.bot_name),
            )
        return state

    def _new_state(
        self,
        message: InboundMessage,
        source: DraftSource,
        draft: IssueDraft,
        queue: list[IssueDraft],
    ) -> PendingState:
        need_project, need_type = draft.missing_fields() if not queue else (False, False)
        return PendingState(
            created_at=self._clock(),
            thread=message.thread,
            origin_message_id=message.message_id,
            original_text=message.original_text,
            source=source,
            draft=draft,
            draft_queue=queue,
            need_project=need_project,
            need_type=need_type,
        )

    @staticmethod
    def _missing(state: PendingState) -> tuple[bool, bool, IssueDraft]:
        if not state.is_multi_card:
            need_project, need_type = state.draft.missing_fields()
            return need_project, need_type, state.draft
        for draft in state.draft_queue:
            need_project, need_type = draft.missing_fields()
            if need_project or need_type:
                return need_project, need_type, draft
        return False, False, state.draft_queue[0]

    @staticmethod
    def _override(draft: IssueDraft, project: str, issue_type: str) -> IssueDraft:
        if project.strip():
            draft.project = project
        if issue_type.strip():
            draft.issue_type = issue_type
        return draft

    def _context(self, message: InboundMessage, q: str, examples: list[str]) -> ExtractionContext:
        return ExtractionContext(
            instruction=q,
            thread_history=message.thread_history,
            example_issues=examples,
            project_aliases=dict(self.parser.project_aliases),
        )

    def _example_issues(self, project: str, issue_type: str) -> list[str]:
        if not project.strip() or not issue_type.strip():
            return []
        jql = sanitize(f'project = {project} AND issuetype = "{issue_type}" ORDER BY created DESC')
        try:
            found = self.tracker.search(jql, limit=EXAMPLE_ISSUES_LIMIT)
        except ExternalServiceError as exc:
            self.logger.warning("example issues lookup failed", project=project, error=redact(str(exc)))
            return []
        return [f"{item.get('key', '')}: {item.get('summary', '')}" for item in found]

    def _report_failure(self, thread: ThreadKey, template: str, exc: ExternalServiceError) -> None:
        info = classify_error(exc)
        self.logger.log_error(
            "drafting collaborator failed",
            error=info.message,
            category=info.category,
            service=exc.service,
            channel_id=thread.channel_id,
            thread_id=thread.thread_id,
        )
        self._reply(thread, template.format(error=info.message))

    def _reply(self, thread: ThreadKey, text: str) -> None:
        self.chat.post_reply(thread, text)


__all__ = ["ConversationEngine"]
