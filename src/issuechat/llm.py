"""LLM-backed draft extraction.

``ChatCompletionsClient`` talks to any OpenAI-compatible ``/chat/completions``
endpoint; ``LLMDraftExtractor`` adapts it to the ``DraftExtractor`` interface
used by the conversation engine. Prompts ask for plain JSON; fenced output is
tolerated.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import requests

from .collaborators import ExtractionContext
from .errors import ExternalServiceError
from .models import IssueDraft
from .retry import TRANSIENT_STATUS, RetryConfig, TransientError, parse_retry_after, run_with_retries

DEFAULT_API_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
MAX_THREAD_CHARS = 4500

_RE_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")

logger = logging.getLogger(__name__)

_EXTRACT_SYSTEM = (
    "Você é um Product Manager sênior especializado em escrever issues Jira de alta qualidade.\n"
    "Sua tarefa é extrair {what} a partir de uma conversa no Slack.\n"
    "Retorne SOMENTE {shape} válido, sem markdown fences."
)

_DESCRIPTION_RULES = """Regras CRÍTICAS:
- Se o usuário informou project/issue_type/summary/priority/labels → copie EXATAMENTE, não altere.
- Se o usuário não informou um campo → deixe vazio (""), o sistema pedirá depois.
- summary <= 110 chars, direto ao ponto, sem prefixos como "[Bug]".
- NÃO invente fatos. Se faltar informação escreva "A confirmar:" seguido de bullets.

Estrutura da description por tipo:
- Bug: ## Contexto\\n## Evidências\\n## Ambiente / Onde ocorreu\\n## Passos para reproduzir\\n## Resultado atual\\n## Resultado esperado\\n## Impacto
- História (Story): ## Contexto\\n## Objetivo\\n## Escopo (MVP)\\n## Critérios de aceitação (lista "- [ ] ...")
- Epic: ## Contexto\\n## Objetivo\\n## Escopo (MVP)\\n## Fora de escopo\\n## KPIs\\n## Riscos\\n## DoD
- Tipo desconhecido: ## Contexto\\n## Problema\\n## Impacto\\n## Critérios de aceite
"""

_DRAFT_SHAPE = """{
  "project": "",
  "issue_type": "",
  "summary": "…",
  "description": "…",
  "priority": "",
  "labels": []
}"""

_CONFIRM_PROMPT = """Você é um classificador de intenção. O usuário enviou a mensagem abaixo.
Ele quer criar um novo card/issue/ticket no Jira AGORA, neste momento?

Responda APENAS "sim" ou "não".

Responda "sim" somente quando a mensagem for um pedido direto e imediato de criação.
Responda "não" para hipóteses, pesquisas, pedidos de resumo, relatórios ou negações.

Mensagem: {message}"""


def strip_code_fences(text: str) -> str:
    return _RE_FENCE.sub("", text.strip()).strip()


def _clip(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[-limit:]


@dataclass
class ChatCompletionsClient:
    api_key: str
    base_url: str = DEFAULT_API_URL
    timeout: float = 60.0
    retry: RetryConfig | None = None
    session: requests.Session | None = None
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        self._session = self.session or requests.Session()
        self._session.headers.setdefault("Authorization", f"Bearer {self.api_key}")
        self._session.headers.setdefault("Content-Type", "application/json")

    def chat(
        self,
        messages: Sequence[Mapping[str, str]],
        *,
        model: str,
        temperature: float = 0.2,
        max_tokens: int = 2000,
    ) -> str:
        if not self.api_key:
            raise ExternalServiceError("missing LLM API key", service="llm")
        url = f"{self.base_url}/chat/completions"
        payload = {
            "model": model,
            "messages": [dict(m) for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        def _run() -> requests.Response:
            try:
                response = self._session.post(url, json=payload, timeout=self.timeout)
            except (requests.ConnectionError, requests.Timeout) as exc:
                raise TransientError(f"LLM request failed: {exc}") from exc
            if response.status_code in TRANSIENT_STATUS or response.status_code >= 500:
                raise TransientError(
                    f"LLM status={response.status_code}",
                    retry_after=parse_retry_after(response.headers.get("Retry-After")),
                )
            return response

        try:
            response = run_with_retries(_run, cfg=self.retry)
        except TransientError as exc:
            raise ExternalServiceError(str(exc), service="llm", transient=True) from exc
        if response.status_code >= 400:
            raise ExternalServiceError(
                f"LLM status={response.status_code} body={response.text[:300]}", service="llm"
            )
        try:
            data: Any = response.json()
            return str(data["choices"][0]["message"]["content"] or "")
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ExternalServiceError(f"unexpected LLM response: {exc}", service="llm") from exc


def _project_map_block(aliases: Mapping[str, str]) -> str:
    if not aliases:
        return ""
    lines = "\n".join(f"- {name} → {key}" for name, key in aliases.items())
    return (
        "\nMapeamento de nomes de projeto para chaves Jira "
        f'(use para identificar o campo "project"):\n{lines}\n'
    )


def _examples_block(examples: Sequence[str]) -> str:
    if not examples:
        return ""
    joined = "\n---\n".join(examples)
    return f"\nExemplos de cards bem escritos do mesmo projeto (referência de estilo):\n{joined}\n"


class LLMDraftExtractor:
    """``DraftExtractor`` backed by a chat-completions model."""

    def __init__(
        self,
        client: ChatCompletionsClient,
        *,
        model: str = DEFAULT_MODEL,
        fallback_model: str = "",
    ) -> None:
        self.client = client
        self.model = model
        self.fallback_model = fallback_model

    def _user_prompt(self, context: ExtractionContext, shape: str, extra_rule: str = "") -> str:
        return (
            "Instrução do usuário (respeite SEMPRE os campos informados explicitamente):\n"
            f"{context.instruction}\n"
            f"{_project_map_block(context.project_aliases)}"
            f"{_examples_block(context.example_issues)}"
            f"\nThread do Slack:\n{_clip(context.thread_history, MAX_THREAD_CHARS)}\n\n"
            f"Retorne JSON exatamente neste formato:\n{shape}\n\n"
            f"{extra_rule}{_DESCRIPTION_RULES}"
        )

    def _complete_json(self, system: str, user: str, max_tokens: int) -> Any:
        out = self.client.chat(
            [{"role": "system", "content": system}, {"role": "user", "content": user}],
            model=self.model,
            max_tokens=max_tokens,
        )
        raw = strip_code_fences(out)
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ExternalServiceError(f"bad issue json: {exc} raw={raw[:300]!r}", service="llm") from exc

    def extract_draft(self, context: ExtractionContext) -> IssueDraft:
        system = _EXTRACT_SYSTEM.format(what="um rascunho de issue", shape="JSON")
        data = self._complete_json(system, self._user_prompt(context, _DRAFT_SHAPE), 2000)
        if not isinstance(data, dict):
            raise ExternalServiceError("bad issue json: expected an object", service="llm")
        draft = IssueDraft.from_mapping(data)
        if not draft.summary:
            draft.summary = "Card gerado a partir de thread"
        if not draft.description:
            draft.description = "(sem descrição)"
        return draft

    def extract_drafts(self, context: ExtractionContext) -> list[IssueDraft]:
        system = _EXTRACT_SYSTEM.format(what="MÚLTIPLOS rascunhos de issues", shape="um array JSON")
        rule = "- Crie exatamente o número de cards que o usuário pediu, na ordem mencionada.\n"
        data = self._complete_json(
            system, self._user_prompt(context, f"[\n{_DRAFT_SHAPE}\n]", rule), 4000
        )
        if not isinstance(data, list):
            raise ExternalServiceError("bad issues json: expected an array", service="llm")
        drafts: list[IssueDraft] = []
        for n, item in enumerate((i for i in data if isinstance(i, dict)), start=1):
            draft = IssueDraft.from_mapping(item)
            if not draft.summary:
                draft.summary = f"Card {n} gerado a partir de thread"
            if not draft.description:
                draft.description = "(sem descrição)"
            drafts.append(draft)
        return drafts

    def confirm_create_intent(self, text: str) -> bool:
        """Ask the cheaper model first; any failure counts as "no"."""
        messages = [{"role": "user", "content": _CONFIRM_PROMPT.format(message=json.dumps(text, ensure_ascii=False))}]
        models = [m for m in (self.fallback_model.strip(), self.model) if m]
        for model in dict.fromkeys(models):
            try:
                out = self.client.chat(messages, model=model, temperature=0, max_tokens=10)
            except ExternalServiceError as exc:
                logger.warning("confirm_create_intent failed on %s: %s", model, exc)
                continue
            confirmed = out.strip().lower().startswith("sim")
            logger.info("confirm_create_intent=%s raw=%r", confirmed, out[:40])
            return confirmed
        return False


class DisabledExtractor:
    """Extractor used when no LLM is configured: declines every request."""

    def extract_draft(self, context: ExtractionContext) -> IssueDraft:
        raise ExternalServiceError("LLM not configured", service="llm")

    def extract_drafts(self, context: ExtractionContext) -> list[IssueDraft]:
        raise ExternalServiceError("LLM not configured", service="llm")

    def confirm_create_intent(self, text: str) -> bool:
        return False


__all__ = ["ChatCompletionsClient", "LLMDraftExtractor", "DisabledExtractor", "strip_code_fences"]
