"""Deterministic parsing of chat commands.

Explicit syntax (``<prefix>`` defaults to ``jira``)::

    jira criar | PROJ | Tipo | Título | Descrição...
    jira definir | projeto=X | tipo=Y | titulo=Z | prioridade=P | labels=a,b
    jira confirmar
    cancelar card

Natural-language requests ("crie um bug no projeto BE ...") are recognised by
keyword heuristics that act as a cheap pre-filter before the LLM confirms the
intent. Everything here is pure: no I/O, no shared state.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from .models import IssueDraft

DEFAULT_PREFIX = "jira"
MAX_TITLE_LENGTH = 140

_RE_PRIORITY = re.compile(r"priority=\s*([^ |\n\t]+)", re.IGNORECASE)
_RE_LABELS = re.compile(r"labels=\s*([^ |\n\t]+)", re.IGNORECASE)
_RE_PROJECT_NAME = re.compile(r"\b(?:projeto|prefixo|project)\s+(?:do|da|de|of|the)\s+(\w+)\b", re.IGNORECASE)
# Matches lower-case words too, hence the article stopwords below
_RE_PROJECT_KEY = re.compile(r"\b(?:prefixo|projeto|project)\s*[:=]?\s*([A-Z][A-Z0-9]+)\b", re.IGNORECASE)
_RE_ROADMAP_OF = re.compile(r"\broadmap\s+(?:do|da|de)\s+([A-Z][A-Z0-9]+)\b", re.IGNORECASE)
_RE_ROADMAP = re.compile(r"\broadmap\s+([A-Z][A-Z0-9]+)\b", re.IGNORECASE)
_RE_QUOTED = re.compile(r'"([^"]+)"')
_RE_TITLE = re.compile(r"\b(título|titulo|title)\s*[:=]\s*(.+)$", re.IGNORECASE)
_RE_TITLE_TAIL = re.compile(
    r"\s*([.,])\s*(do\s+tipo|tipo|no\s+projeto|projeto|prefixo|board)\b.*$", re.IGNORECASE
)
_RE_ISSUE_KEY = re.compile(r"\b([A-Z][A-Z0-9]+-\d+)\b")

_KEY_STOPWORDS = {"V2", "DO", "DA", "DE"}

CREATE_VERBS = ("crie", "cria", "criar", "abra", "abre", "abrir")
ARTIFACT_NOUNS = ("card", "ticket", "issue", "história", "historia", "bug", "épico", "epico", "tarefa")
DESTINATIONS = (" no jira", " no projeto", " no portal")
THREAD_PHRASES = (
    "com base nessa thread",
    "com base na thread",
    "baseado nessa thread",
    "baseado na thread",
    "baseada nessa thread",
    "baseada na thread",
    "a partir dessa thread",
    "a partir da thread",
    "dessa thread",
    "nessa thread",
)
MULTI_CARD_QUALIFIERS = (
    "dois card",
    "duas card",
    "dois ticket",
    "duas ticket",
    "dois issue",
    "duas issue",
    "múltiplos card",
    "vários card",
    "multiplos card",
    "varios card",
)
_ISSUE_TYPE_KEYWORDS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("épico", "epico", "epic"), "Epic"),
    (("história", "historia"), "História"),
    (("bug",), "Bug"),
    (("tarefa",), "Tarefa"),
    (("subtarefa",), "Subtarefa"),
    (("spike",), "Spike"),
)


def split_csv(value: str) -> list[str]:
    """Split a comma-separated string, dropping empty entries."""
    return [p.strip() for p in value.split(",") if p.strip()]


def _strip_prefix(text: str, prefix: str, *verbs: str) -> str | None:
    t = text.strip()
    low = t.lower()
    for verb in verbs:
        head = f"{prefix} {verb}"
        if low.startswith(head):
            return t[len(head):].strip()
    return None


def extract_inline_extras(description: str) -> tuple[str, list[str], str]:
    """Pull ``priority=`` and ``labels=`` tokens out of a description.

    Returns ``(priority, labels, cleaned_description)``.
    """
    clean = description.strip()
    if not clean:
        return "", [], ""
    priority = ""
    labels: list[str] = []

    m = _RE_PRIORITY.search(clean)
    if m:
        priority = m.group(1)
        clean = (clean[: m.start()] + clean[m.end():]).strip()

    m = _RE_LABELS.search(clean)
    if m:
        labels = split_csv(m.group(1))
        clean = (clean[: m.start()] + clean[m.end():]).strip()

    clean = clean.replace("  ", " ").strip(" |")
    return priority, labels, clean.strip()


def parse_explicit_create(text: str, prefix: str = DEFAULT_PREFIX) -> tuple[bool, IssueDraft]:
    rest = _strip_prefix(text, prefix, "criar")
    if rest is None:
        return False, IssueDraft()
    # "jira criar | PROJ | ..." : the pipe after the verb opens the first segment
    rest = rest.removeprefix("|").strip()
    parts = [p.strip() for p in rest.split("|")]
    if len(parts) < 3:  # noqa: PLR2004
        return True, IssueDraft(summary=rest)
    description = " | ".join(parts[3:]).strip()
    priority, labels, description = extract_inline_extras(description)
    return True, IssueDraft(
        project=parts[0],
        issue_type=parts[1],
        summary=parts[2],
        description=description,
        priority=priority,
        labels=labels,
    )


def is_define_command(text: str, prefix: str = DEFAULT_PREFIX) -> bool:
    return _strip_prefix(text, prefix, "definir", "set") is not None


def apply_define(text: str, draft: IssueDraft, prefix: str = DEFAULT_PREFIX) -> bool:
    """Apply ``key=value`` segments of a define command to ``draft`` in place."""
    rest = _strip_prefix(text, prefix, "definir", "set")
    if rest is None:
        return False
    updated = False
    for part in rest.split("|"):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        key = key.strip().lower()
        value = value.strip()
        if key in ("projeto", "project"):
            draft.project = value
        elif key in ("tipo", "type"):
            draft.issue_type = value
        elif key in ("titulo", "título", "summary"):
            draft.summary = value
        elif key in ("prioridade", "priority"):
            draft.priority = value
        elif key in ("labels", "label"):
            draft.set_labels(split_csv(value))
        else:
            continue
        updated = True
    return updated


def is_confirm_command(text: str, prefix: str = DEFAULT_PREFIX) -> bool:
    low = text.strip().lower()
    return (
        low == "confirmar"
        or low.startswith("confirmar ")
        or low.startswith(f"{prefix} confirmar")
    )


def is_cancel_command(text: str, prefix: str = DEFAULT_PREFIX) -> bool:
    low = text.strip().lower()
    return "cancelar" in low and ("card" in low or prefix in low)


def has_create_verb(low: str) -> bool:
    return any(v in low for v in CREATE_VERBS)


def looks_like_create_intent(text: str, project_aliases: Mapping[str, str] | None = None) -> bool:
    low = text.strip().lower()
    if not low or not has_create_verb(low):
        return False
    if any(a in low for a in ARTIFACT_NOUNS):
        return True
    if any(d in low for d in DESTINATIONS):
        return True
    return any(name in low for name in (project_aliases or {}))


def is_thread_based_create(text: str) -> bool:
    low = text.strip().lower()
    if not any(p in low for p in THREAD_PHRASES):
        return False
    return has_create_verb(low) or "card" in low or "jira" in low


def is_multi_card_create(text: str) -> bool:
    low = text.strip().lower()
    if any(q in low for q in MULTI_CARD_QUALIFIERS):
        return True
    return "um sobre" in low and "outro" in low


def parse_project_key(text: str, project_aliases: Mapping[str, str] | None = None) -> str:
    s = text.strip()
    if not s:
        return ""
    low = s.lower()
    aliases = project_aliases or {}

    m = _RE_PROJECT_NAME.search(s)
    if m:
        key = aliases.get(m.group(1).strip().lower())
        if key:
            return key
    if "projeto" in low or "prefixo" in low or "project" in low:
        for name, key in aliases.items():
            if name in low:
                return key
    for name, key in aliases.items():
        if f"no {name}" in low or f"na {name}" in low or f"em {name}" in low:
            return key

    m = _RE_PROJECT_KEY.search(s)
    if m:
        key = m.group(1).strip().upper()
        return "" if key in _KEY_STOPWORDS else key

    if "roadmap" in low:
        for pattern in (_RE_ROADMAP_OF, _RE_ROADMAP):
            m = pattern.search(s)
            if m:
                key = m.group(1).strip().upper()
                return "" if key == "V2" else key
    return ""


def parse_issue_type(text: str) -> str:
    low = text.lower()
    for keywords, issue_type in _ISSUE_TYPE_KEYWORDS:
        if any(k in low for k in keywords):
            return issue_type
    return ""


def parse_summary(text: str) -> str:
    s = text.strip()
    if not s:
        return ""
    m = _RE_QUOTED.search(s)
    if m:
        return m.group(1).strip()[:MAX_TITLE_LENGTH]
    m = _RE_TITLE.search(s)
    if m:
        return clean_title(m.group(2))
    return ""


def clean_title(text: str) -> str:
    y = _RE_TITLE_TAIL.sub("", text.strip())
    y = " ".join(y.split()).rstrip(". ")
    return y[:MAX_TITLE_LENGTH]


def extract_issue_key(text: str) -> str:
    m = _RE_ISSUE_KEY.search(text.upper())
    return m.group(1) if m else ""


def looks_like_summon(text: str, bot_name: str, bot_user_id: str = "") -> bool:
    """True when the message addresses the bot by mention or name prefix."""
    if bot_user_id and (f"<@{bot_user_id}>" in text or f"<@{bot_user_id}|" in text):
        return True
    low = text.strip().lower()
    name = bot_name.lower()
    if f"|@{name}>" in low:
        return True
    return low.startswith((f"{name}:", f"!{name}")) or f"@{name}" in low


def strip_summon(text: str, bot_name: str, bot_user_id: str = "") -> str:
    t = text.strip()
    if bot_user_id:
        t = t.replace(f"<@{bot_user_id}>", "").strip()
    name = bot_name.lower()
    for head in (f"{name}:", f"!{name}", f"@{name}"):
        if t.lower().startswith(head):
            t = t[len(head):]
            break
    return t.strip()


@dataclass
class CommandParser:
    """Parser bound to one deployment's prefix and project aliases.

    ``project_aliases`` maps lower-case human names to project keys
    (``{"backend": "BE"}``) and is injected at construction time.
    """

    project_aliases: Mapping[str, str] = field(default_factory=dict)
    prefix: str = DEFAULT_PREFIX

    def __post_init__(self) -> None:
        self.project_aliases = {
            str(k).strip().lower(): str(v).strip().upper()
            for k, v in dict(self.project_aliases).items()
            if str(k).strip() and str(v).strip()
        }
        self.prefix = self.prefix.strip().lower() or DEFAULT_PREFIX

    def parse_explicit_create(self, text: str) -> tuple[bool, IssueDraft]:
        return parse_explicit_create(text, self.prefix)

    def apply_define(self, text: str, draft: IssueDraft) -> bool:
        return apply_define(text, draft, self.prefix)

    def is_define(self, text: str) -> bool:
        return is_define_command(text, self.prefix)

    def is_confirm(self, text: str) -> bool:
        return is_confirm_command(text, self.prefix)

    def is_cancel(self, text: str) -> bool:
        return is_cancel_command(text, self.prefix)

    def looks_like_create_intent(self, text: str) -> bool:
        return looks_like_create_intent(text, self.project_aliases)

    def is_thread_based_create(self, text: str) -> bool:
        return is_thread_based_create(text)

    def is_multi_card_create(self, text: str) -> bool:
        return is_multi_card_create(text)

    def parse_project_key(self, text: str) -> str:
        return parse_project_key(text, self.project_aliases)

    def parse_issue_type(self, text: str) -> str:
        return parse_issue_type(text)

    def parse_summary(self, text: str) -> str:
        return parse_summary(text)


__all__ = [
    "CommandParser",
    "DEFAULT_PREFIX",
    "apply_define",
    "clean_title",
    "extract_inline_extras",
    "extract_issue_key",
    "is_cancel_command",
    "is_confirm_command",
    "is_define_command",
    "is_multi_card_create",
    "is_thread_based_create",
    "looks_like_create_intent",
    "looks_like_summon",
    "parse_explicit_create",
    "parse_issue_type",
    "parse_project_key",
    "parse_summary",
    "split_csv",
    "strip_summon",
]
