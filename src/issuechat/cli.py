"""issuechat CLI.

Subcommands:
  adf    -> convert Markdown (file or stdin) to Atlassian Document Format JSON
  jql    -> sanitize a JQL query, or build the canned query for an intent
  parse  -> show how the command parser classifies a message
  chat   -> interactive console session driving the conversation engine

Configuration comes from ``--config`` (YAML) when given, otherwise from the
environment (and ``.env``).
"""

from __future__ import annotations

import argparse
import itertools
import json
import os
import sys
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path
from typing import Any, TextIO

from issuechat.adf import markdown_to_adf
from issuechat.commands import CommandParser, extract_issue_key, looks_like_summon, strip_summon
from issuechat.config import AssistantConfig, ConfigError, load_config, load_config_from_env
from issuechat.draft_store import DraftStore
from issuechat.engine import ConversationEngine
from issuechat.errors import redact
from issuechat.jira_rest import JiraRestClient
from issuechat.jql import default_for_intent, sanitize
from issuechat.llm import ChatCompletionsClient, DisabledExtractor, LLMDraftExtractor
from issuechat.logging import configure_logging
from issuechat.models import CreatedIssue, InboundMessage, IssueDraft, ThreadKey

CONSOLE_CHANNEL = "console"
EXIT_COMMANDS = {"/quit", "/exit", "sair"}

_MAX_HELP_WIDTH = 100


class _HelpFormatter(argparse.HelpFormatter):
    def __init__(self, prog: str) -> None:
        super().__init__(prog, max_help_position=30, width=_MAX_HELP_WIDTH)


class _FormatterArgumentParser(argparse.ArgumentParser):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("formatter_class", _HelpFormatter)
        super().__init__(*args, **kwargs)


class ConsoleTransport:
    """``ChatTransport`` that prints replies to a text stream."""

    def __init__(self, out: TextIO | None = None, bot_name: str = "jarvis") -> None:
        self.out = out or sys.stdout
        self.bot_name = bot_name
        self.replies: list[str] = []

    def post_reply(self, thread: ThreadKey, text: str) -> None:
        self.replies.append(text)
        print(f"[{self.bot_name}] {text}\n", file=self.out)

    def permalink(self, channel_id: str, message_id: str) -> str | None:
        return f"console://{channel_id}/{message_id}"


class MockTracker:
    """In-memory ``IssueTracker`` fabricating sequential issue keys."""

    def __init__(self) -> None:
        self._counters: dict[str, itertools.count[int]] = {}
        self.created: list[tuple[IssueDraft, Mapping[str, Any]]] = []

    def create_issue(self, draft: IssueDraft, description: Mapping[str, Any]) -> CreatedIssue:
        counter = self._counters.setdefault(draft.project, itertools.count(1))
        key = f"{draft.project}-{next(counter)}"
        self.created.append((draft, description))
        return CreatedIssue(key=key, id=str(len(self.created)), url=f"mock://browse/{key}")

    def search(self, jql: str, limit: int = 20) -> list[dict[str, Any]]:
        return []


def _build_parser() -> argparse.ArgumentParser:
    """Construct top-level CLI parser with subcommands."""
    p = _FormatterArgumentParser(
        prog="issuechat", description="Chat-driven Jira issue drafting assistant"
    )
    p.add_argument("--config", help="YAML configuration file (default: environment variables)")
    p.add_argument(
        "--quiet",
        action="store_true",
        help="Only log warnings and errors (env: ISSUECHAT_QUIET=1)",
    )
    sub = p.add_subparsers(
        dest="cmd",
        required=True,
        parser_class=_FormatterArgumentParser,
        metavar="<command>",
    )

    pa = sub.add_parser("adf", help="Convert Markdown to ADF JSON")
    pa.add_argument("file", nargs="?", help="Markdown file (default: stdin)")
    pa.add_argument("--pretty", action="store_true")

    pj = sub.add_parser("jql", help="Sanitize a JQL query or build one for an intent")
    pj.add_argument("query", nargs="?", default="")
    pj.add_argument("--intent", help="listar_bugs_abertos | busca_texto | <other>")
    pj.add_argument("--question", default="", help="Question text used by --intent")

    pp = sub.add_parser("parse", help="Classify a chat message")
    pp.add_argument("text")

    pc = sub.add_parser("chat", help="Interactive console drafting session")
    pc.add_argument("--thread", default="t1", help="Thread id for the session")
    pc.add_argument("--history", help="File with the thread history passed to the LLM")
    pc.add_argument(
        "--enable-create",
        action="store_true",
        help="Enable issue creation regardless of configuration",
    )
    return p


def _load(args: argparse.Namespace) -> AssistantConfig:
    if args.config:
        return load_config(args.config)
    return load_config_from_env()


def _cmd_adf(args: argparse.Namespace) -> int:
    text = Path(args.file).read_text(encoding="utf-8") if args.file else sys.stdin.read()
    doc = markdown_to_adf(text)
    print(json.dumps(doc, ensure_ascii=False, indent=2 if args.pretty else None))
    return 0


def _cmd_jql(cfg: AssistantConfig, args: argparse.Namespace) -> int:
    if args.intent:
        print(sanitize(default_for_intent(args.intent, args.question, cfg.project_keys)))
        return 0
    if not args.query.strip():
        print("error: provide QUERY or --intent", file=sys.stderr)
        return 2
    print(sanitize(args.query))
    return 0


def _cmd_parse(cfg: AssistantConfig, args: argparse.Namespace) -> int:
    parser = CommandParser(cfg.project_aliases, cfg.command_prefix)
    text = strip_summon(args.text, cfg.bot_name)
    explicit, draft = parser.parse_explicit_create(text)
    result: dict[str, Any] = {
        "text": text,
        "summoned": looks_like_summon(args.text, cfg.bot_name),
        "explicit_create": explicit,
        "define": parser.is_define(text),
        "confirm": parser.is_confirm(text),
        "cancel": parser.is_cancel(text),
        "thread_based_create": parser.is_thread_based_create(text),
        "multi_card": parser.is_multi_card_create(text),
        "create_intent": parser.looks_like_create_intent(text),
        "project": parser.parse_project_key(text),
        "issue_type": parser.parse_issue_type(text),
        "summary": parser.parse_summary(text),
        "issue_key": extract_issue_key(text),
    }
    if explicit:
        result["draft"] = draft.to_dict()
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0


def _build_engine(
    cfg: AssistantConfig, chat: ConsoleTransport, *, create_enabled: bool
) -> ConversationEngine:
    if cfg.jira_configured and os.environ.get("ISSUECHAT_MOCK") != "1":
        tracker: Any = JiraRestClient(cfg.jira_base_url, cfg.jira_email, cfg.jira_api_token)
    else:
        tracker = MockTracker()
    if cfg.llm_configured:
        client = ChatCompletionsClient(
            cfg.llm_api_key, base_url=cfg.llm_base_url, timeout=cfg.llm_timeout
        )
        extractor: Any = LLMDraftExtractor(
            client, model=cfg.llm_model, fallback_model=cfg.llm_fallback_model
        )
    else:
        extractor = DisabledExtractor()
    return ConversationEngine(
        CommandParser(cfg.project_aliases, cfg.command_prefix),
        DraftStore(cfg.draft_ttl_seconds),
        extractor,
        tracker,
        chat,
        create_enabled=create_enabled,
        project_keys=cfg.project_keys,
        bot_name=cfg.bot_name,
    )


def run_chat(
    engine: ConversationEngine,
    lines: Iterable[str],
    *,
    thread_id: str,
    history: str = "",
    bot_name: str = "jarvis",
    out: TextIO | None = None,
) -> int:
    """Feed each input line to ``engine`` as a message in one thread."""
    out = out or sys.stdout
    thread = ThreadKey(CONSOLE_CHANNEL, thread_id)
    transcript = [history] if history.strip() else []
    for n, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line:
            continue
        if line.lower() in EXIT_COMMANDS:
            break
        message = InboundMessage(
            thread=thread,
            message_id=f"{thread_id}.{n}",
            text=strip_summon(line, bot_name),
            original_text=line,
            thread_history="\n".join(transcript),
        )
        if not engine.handle(message):
            print("(mensagem fora do fluxo de criação de cards)\n", file=out)
        transcript.append(f"user: {line}")
    return 0


def _cmd_chat(cfg: AssistantConfig, args: argparse.Namespace) -> int:
    history = Path(args.history).read_text(encoding="utf-8") if args.history else ""
    chat = ConsoleTransport(bot_name=cfg.bot_name)
    engine = _build_engine(cfg, chat, create_enabled=cfg.create_enabled or args.enable_create)
    if sys.stdin.isatty():
        print(f"issuechat console (thread {args.thread}); /quit para sair\n")
    return run_chat(
        engine, sys.stdin, thread_id=args.thread, history=history, bot_name=cfg.bot_name
    )


def _build_handlers(
    args: argparse.Namespace, cfg: AssistantConfig
) -> dict[str, Callable[[], int]]:
    return {
        "adf": lambda: _cmd_adf(args),
        "jql": lambda: _cmd_jql(cfg, args),
        "parse": lambda: _cmd_parse(cfg, args),
        "chat": lambda: _cmd_chat(cfg, args),
    }


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.quiet and os.environ.get("ISSUECHAT_QUIET") == "1":
        args.quiet = True
    try:
        cfg = _load(args)
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    configure_logging(
        json_logging=cfg.logging_json_enabled,
        level="WARNING" if args.quiet else cfg.logging_level,
    )
    handler = _build_handlers(args, cfg).get(args.cmd)
    if handler is None:  # pragma: no cover - argparse enforces valid choices
        parser.print_help()
        return 1
    try:
        return handler()
    except OSError as exc:
        print(f"error: {redact(str(exc))}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
