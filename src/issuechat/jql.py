"""JQL canonicalization helpers.

Language models and users often write queries such as::

    project in (X) AND text ~ "a" OR text ~ "b"

which Jira evaluates as ``(project in (X) AND text ~ "a") OR text ~ "b"``.
``fix_precedence`` regroups the OR alternatives under the project filter and
``sanitize`` additionally normalises whitespace, field aliases and duplicate
alternatives. Both are pure functions.
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence

INTENT_OPEN_BUGS = "listar_bugs_abertos"
INTENT_TEXT_SEARCH = "busca_texto"
DEFAULT_ORDER = "ORDER BY updated DESC"
MAX_KEYWORDS = 3

_RE_SPLIT_OR = re.compile(r"\s+OR\s+", re.IGNORECASE)
_RE_LAST_AND = re.compile(r"^(.*)\s+AND\s+(.+)$", re.IGNORECASE | re.DOTALL)
_RE_DESCRIPTION_ALIAS = re.compile(r"description ~", re.IGNORECASE)

_STOPWORDS = frozenset(
    {
        "o", "a", "os", "as", "um", "uma",
        "de", "do", "da", "dos", "das",
        "em", "no", "na", "nos", "nas",
        "para", "por", "com", "e", "é",
        "me", "que", "já", "qual", "quais",
        "quando", "como", "sobre", "tem", "foi",
        "está", "estão", "ser", "isso", "esse",
        # intent verbs
        "explica", "explique", "mostre", "mostra",
        "liste", "listar", "busca", "buscar",
        "resume", "resumo", "fala", "fale",
        "quero", "preciso", "gostaria",
    }
)
_PUNCTUATION = ".,!?;:\"'()[]{}"


def _collapse(text: str) -> str:
    return " ".join(text.split())


def fix_precedence(jql: str) -> str:
    """Group top-level OR alternatives that follow a project filter.

    ``project = X AND a OR b OR c`` becomes ``project = X AND (a OR b OR c)``.
    The query is returned unchanged when it is already grouped, does not mix
    AND with OR, or its first alternative carries no project filter.
    """
    upper = jql.upper()
    if " AND " not in upper or " OR " not in upper:
        return jql
    if "AND (" in upper or "AND(" in upper:
        return jql

    body = jql
    order_by = ""
    idx = upper.find(" ORDER BY ")
    if idx >= 0:
        order_by = " " + jql[idx:].strip()
        body = jql[:idx].strip()
        body_upper = body.upper()
        if " AND " not in body_upper or " OR " not in body_upper:
            return jql

    or_parts = _RE_SPLIT_OR.split(body)
    if len(or_parts) <= 1:
        return jql
    first_upper = or_parts[0].upper()
    if "PROJECT" not in first_upper or " AND " not in first_upper:
        return jql
    m = _RE_LAST_AND.match(or_parts[0])
    if m is None:
        return jql
    prefix = m.group(1).strip()
    conditions = [m.group(2).strip(), *(p.strip() for p in or_parts[1:])]
    return f"{prefix} AND ({' OR '.join(conditions)}){order_by}"


def sanitize(jql: str) -> str:
    """Canonicalize a query; ``sanitize(sanitize(q)) == sanitize(q)``.

    Whitespace is collapsed both before and after the precedence repair so a
    tab or newline next to an operator cannot hide it from the first pass.
    """
    j = _collapse(jql)
    if not j:
        return j
    j = _collapse(fix_precedence(j))
    j = _RE_DESCRIPTION_ALIAS.sub("text ~", j)
    seen: set[str] = set()
    unique: list[str] = []
    for part in j.split(" OR "):
        part = part.strip()
        if not part:
            continue
        norm = _collapse(part)
        if norm not in seen:
            seen.add(norm)
            unique.append(part)
    return " OR ".join(unique)


def extract_text_query(question: str) -> str:
    """Return up to three topic keywords from a natural-language question."""
    kept: list[str] = []
    for word in question.lower().split():
        word = word.strip(_PUNCTUATION)
        if not word or word in _STOPWORDS:
            continue
        kept.append(word)
        if len(kept) == MAX_KEYWORDS:
            break
    return " ".join(kept)


def default_for_intent(intent: str, question: str, project_keys: Sequence[str]) -> str:
    proj = ", ".join(k.strip() for k in project_keys if k.strip())
    scope = f"project in ({proj}) AND " if proj else ""
    listing = f"project in ({proj}) {DEFAULT_ORDER}" if proj else DEFAULT_ORDER

    intent = intent.strip()
    if intent == INTENT_OPEN_BUGS:
        return f"{scope}issuetype = Bug AND statusCategory != Done {DEFAULT_ORDER}"
    if intent == INTENT_TEXT_SEARCH:
        terms = extract_text_query(question)
        if not terms:
            return listing
        return f"{scope}text ~ {json.dumps(terms, ensure_ascii=False)} {DEFAULT_ORDER}"
    return listing


__all__ = [
    "INTENT_OPEN_BUGS",
    "INTENT_TEXT_SEARCH",
    "default_for_intent",
    "extract_text_query",
    "fix_precedence",
    "sanitize",
]
