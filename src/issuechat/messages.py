"""Reply templates posted to the chat thread (Slack mrkdwn)."""

from __future__ import annotations

import json
from collections.abc import Sequence

from .models import CreatedIssue, IssueDraft

MAX_COMMAND_QUOTE = 400


def or_dash(value: str) -> str:
    return value if value.strip() else "—"


def clip(value: str, limit: int) -> str:
    value = value.strip()
    if len(value) <= limit:
        return value
    return value[:limit].rstrip() + "…"


def missing_fields(draft: IssueDraft, need_project: bool, need_type: bool, bot_name: str = "jarvis") -> str:
    missing = [name for name, flag in (("projeto", need_project), ("tipo", need_type)) if flag]
    msg = "Preciso de mais informações para criar o card.\n\n"
    if missing:
        msg += f"Faltando: *{' e '.join(missing)}*\n\n"
    msg += (
        f"*Resumo:* {or_dash(draft.summary)}\n"
        f"*Projeto:* {or_dash(draft.project)}\n"
        f"*Tipo:* {or_dash(draft.issue_type)}\n\n"
    )
    msg += "Responda com:\n"
    msg += f"`{bot_name}: jira definir | projeto=ABC | tipo=Bug`"
    return msg


def _confirm_hint(bot_name: str) -> str:
    return (
        f"Se estiver ok, responda: `{bot_name}: confirmar`\n"
        f"Se quiser descartar: `{bot_name}: cancelar card`"
    )


def preview_draft(draft: IssueDraft, include_confirm_hint: bool = True, bot_name: str = "jarvis") -> str:
    msg = "🧾 *Prévia do card:*\n\n"
    msg += f"*Projeto:* {or_dash(draft.project)}\n"
    msg += f"*Tipo:* {or_dash(draft.issue_type)}\n"
    msg += f"*Resumo:* {or_dash(draft.summary)}\n\n"
    if include_confirm_hint:
        msg += _confirm_hint(bot_name)
    return msg


def preview_drafts(drafts: Sequence[IssueDraft], bot_name: str = "jarvis") -> str:
    lines = [f"🧾 *Prévia dos {len(drafts)} cards:*\n"]
    for n, draft in enumerate(drafts, start=1):
        lines.append(f"*Card {n}*")
        lines.append(f"*Projeto:* {or_dash(draft.project)}")
        lines.append(f"*Tipo:* {or_dash(draft.issue_type)}")
        lines.append(f"*Resumo:* {or_dash(draft.summary)}\n")
    return "\n".join(lines) + "\n" + _confirm_hint(bot_name)


def created(issue: CreatedIssue) -> str:
    msg = f"Card criado ✅ *{issue.key}*"
    return msg + (f"\n{issue.url}" if issue.url else "")


def origin_footer(
    description: str,
    origin_link: str | None,
    origin_message_id: str,
    thread_link: str | None,
    original_text: str,
) -> str:
    parts = [description.strip(), "\n\n---\n", "Thread de origem\n\n"]
    if origin_link:
        parts.append(f"- Mensagem original: {origin_link}\n")
    else:
        parts.append(f"- Mensagem original: (link indisponível) ts={origin_message_id}\n")
    if thread_link:
        parts.append(f"- Thread (raiz): {thread_link}\n")
    if original_text.strip():
        quoted = json.dumps(clip(original_text, MAX_COMMAND_QUOTE), ensure_ascii=False)
        parts.append(f"\n- Comando: {quoted}\n")
    return "".join(parts)


CREATE_DISABLED = "Criação de issues no Jira está desabilitada (JIRA_CREATE_ENABLED != true)."
NOTHING_TO_DEFINE = (
    "Não encontrei nenhum rascunho pendente neste thread. "
    "Peça: `{bot}: com base nessa thread crie um card no jira`."
)
NOTHING_TO_CONFIRM = "Não encontrei nenhum rascunho pendente para confirmar neste thread."
DEFINE_USAGE = (
    "Não consegui ler `projeto=` e/ou `tipo=`. "
    "Exemplo: `{bot}: jira definir | projeto=PROJ | tipo=Bug`"
)
CANCELLED = "Ok — rascunho pendente descartado."
EXTRACTION_FAILED = "Não consegui montar o rascunho do card a partir da thread: {error}"
EXTRACTION_MULTI_FAILED = "Não consegui montar os rascunhos dos cards a partir da thread: {error}"
CREATE_FAILED = "Não consegui criar o card no Jira: {error}"
BATCH_ABORTED = (
    "Criação interrompida no card {index} de {total}. "
    "Os cards anteriores já foram criados; o rascunho foi descartado."
)


__all__ = [
    "missing_fields",
    "preview_draft",
    "preview_drafts",
    "created",
    "origin_footer",
    "or_dash",
    "clip",
]
