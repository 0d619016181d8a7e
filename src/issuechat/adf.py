"""Markdown to Atlassian Document Format (ADF) conversion.

Supported constructs:

- ``## Title``        -> heading (a rule is inserted before every heading
  except the first block)
- ``- item``/``* item`` -> flat bulletList of listItem/paragraph
- ``- [ ] task``      -> taskList / taskItem (TODO, DONE for ``[x]``)
- ``---``, ``***``, ``___`` -> rule
- ``**bold**``        -> text with a ``strong`` mark
- anything else       -> paragraph

Jira rejects zero-length text nodes, so empty spans are replaced with a
single space and an empty document becomes one paragraph holding a space.
"""

from __future__ import annotations

import itertools
import re
import threading
from typing import Any

_RE_HEADING = re.compile(r"^(#{1,6})\s+(.+)$")
_RE_TASK = re.compile(r"^-\s+\[([xX ])\]\s*(.*)$")
_RE_BOLD = re.compile(r"\*\*(.+?)\*\*")
_RE_RULE = re.compile(r"^-{3,}$|^\*{3,}$|^_{3,}$")

Node = dict[str, Any]

_id_lock = threading.Lock()
_id_counter = itertools.count(1)


def _next_local_id(prefix: str) -> str:
    with _id_lock:
        return f"{prefix}-{next(_id_counter)}"


def _text(value: str) -> Node:
    return {"type": "text", "text": value or " "}


def _paragraph(content: list[Node]) -> Node:
    return {"type": "paragraph", "content": content}


def _is_bullet(line: str) -> bool:
    if _RE_TASK.match(line):
        return False
    return line.startswith(("- ", "* "))


def parse_inline(text: str) -> list[Node]:
    """Split ``text`` into plain and bold spans."""
    if not text.strip():
        return [_text(" ")]
    result: list[Node] = []
    last = 0
    for m in _RE_BOLD.finditer(text):
        if m.start() > last:
            result.append(_text(text[last : m.start()]))
        result.append({"type": "text", "text": m.group(1), "marks": [{"type": "strong"}]})
        last = m.end()
    if last < len(text):
        result.append(_text(text[last:]))
    return result or [_text(" ")]


def _parse_blocks(lines: list[str]) -> list[Node]:  # noqa: C901 - one branch per construct
    nodes: list[Node] = []
    i = 0
    while i < len(lines):
        line = lines[i].strip()

        heading = _RE_HEADING.match(line)
        if heading:
            if nodes:
                nodes.append({"type": "rule"})
            nodes.append(
                {
                    "type": "heading",
                    "attrs": {"level": len(heading.group(1))},
                    "content": parse_inline(heading.group(2)),
                }
            )
            i += 1
            continue

        if _RE_RULE.match(line):
            nodes.append({"type": "rule"})
            i += 1
            continue

        if _RE_TASK.match(line):
            list_id = _next_local_id("tl")
            items: list[Node] = []
            while i < len(lines):
                task = _RE_TASK.match(lines[i].strip())
                if task is None:
                    break
                items.append(
                    {
                        "type": "taskItem",
                        "attrs": {
                            "localId": _next_local_id("ti"),
                            "state": "DONE" if task.group(1).lower() == "x" else "TODO",
                        },
                        "content": parse_inline(task.group(2)),
                    }
                )
                i += 1
            nodes.append({"type": "taskList", "attrs": {"localId": list_id}, "content": items})
            continue

        if _is_bullet(line):
            items = []
            while i < len(lines):
                item = lines[i].strip()
                if not _is_bullet(item):
                    break
                items.append({"type": "listItem", "content": [_paragraph(parse_inline(item[2:]))]})
                i += 1
            nodes.append({"type": "bulletList", "content": items})
            continue

        if line:
            nodes.append(_paragraph(parse_inline(line)))
        i += 1
    return nodes


def markdown_to_adf(text: str) -> Node:
    """Convert Markdown into an ADF ``doc`` node."""
    lines = text.replace("\r\n", "\n").split("\n")
    content = _parse_blocks(lines)
    if not content:
        content = [_paragraph([_text(" ")])]
    return {"type": "doc", "version": 1, "content": content}


__all__ = ["markdown_to_adf", "parse_inline"]
