"""Jira Cloud REST adapter implementing the ``IssueTracker`` interface."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import requests

from .errors import ExternalServiceError
from .jql import sanitize
from .models import CreatedIssue, IssueDraft
from .retry import (
    TRANSIENT_STATUS,
    RetryConfig,
    TransientError,
    parse_retry_after,
    run_with_retries,
)

USER_AGENT = "issuechat-jira/0.1.0"
HTTP_ERROR_STATUS = 300
SEARCH_FIELDS = ["summary", "status", "issuetype", "priority", "assignee", "project", "updated"]

logger = logging.getLogger(__name__)


class JiraAPIError(ExternalServiceError):
    """Raised when the Jira REST API returns an error."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        response_text: str | None = None,
        transient: bool = False,
    ):
        super().__init__(message, service="jira", transient=transient)
        self.status = status
        self.response_text = response_text


def _preview(text: str, limit: int = 800) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[:limit] + "…"


@dataclass
class JiraRestClient:
    """Lightweight Jira Cloud client (basic auth with an API token)."""

    base_url: str
    email: str
    api_token: str
    timeout: float = 35.0
    retry: RetryConfig | None = None
    session: requests.Session | None = None
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")
        self._session = self.session or requests.Session()
        self._session.auth = (self.email, self.api_token)
        self._session.headers.setdefault("Accept", "application/json")
        self._session.headers.setdefault("Content-Type", "application/json")
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    def _request(self, method: str, path: str, *, json_body: Any | None = None) -> Any:
        if not self.base_url:
            raise JiraAPIError("missing Jira base URL")
        if not self.email or not self.api_token:
            raise JiraAPIError("missing Jira credentials")
        url = f"{self.base_url}/{path.lstrip('/')}"

        def _run() -> requests.Response:
            try:
                response = self._session.request(method, url, json=json_body, timeout=self.timeout)
            except (requests.ConnectionError, requests.Timeout) as exc:
                raise TransientError(f"Jira {method} {url}: {exc}") from exc
            if response.status_code in TRANSIENT_STATUS:
                raise TransientError(
                    f"Jira {method} {url} status={response.status_code}",
                    retry_after=_retry_after(response),
                )
            return response

        try:
            response = run_with_retries(_run, cfg=self.retry)
        except TransientError as exc:
            raise JiraAPIError(str(exc), transient=True) from exc
        except requests.RequestException as exc:
            raise JiraAPIError(f"Jira {method} {url} failed: {exc}") from exc
        if response.status_code >= HTTP_ERROR_STATUS:
            raise JiraAPIError(
                f"jira {method.lower()} status={response.status_code} body={_preview(response.text)}",
                status=response.status_code,
                response_text=response.text,
            )
        if not response.text:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise JiraAPIError(f"jira returned invalid JSON: {_preview(response.text, 200)}") from exc

    def browse_url(self, key: str) -> str:
        return f"{self.base_url}/browse/{key}"

    def create_issue(self, draft: IssueDraft, description: Mapping[str, Any]) -> CreatedIssue:
        d = draft.stripped()
        if not d.project or not d.issue_type:
            raise JiraAPIError("project and issueType are required")
        fields: dict[str, Any] = {
            "project": {"key": d.project},
            "summary": d.summary,
            "issuetype": {"name": d.issue_type},
            "description": dict(description),
        }
        if d.priority:
            fields["priority"] = {"name": d.priority}
        if d.labels:
            fields["labels"] = list(d.labels)
        logger.info(
            "create issue payload preview: %s",
            json.dumps({k: fields[k] for k in ("project", "issuetype", "summary")}, ensure_ascii=False),
        )
        data = self._request("POST", "/rest/api/3/issue", json_body={"fields": fields})
        key = data.get("key") if isinstance(data, dict) else None
        if not key:
            raise JiraAPIError("jira create: empty key in response")
        return CreatedIssue(key=str(key), id=str(data.get("id") or ""), url=self.browse_url(str(key)))

    def search(self, jql: str, limit: int = 20) -> list[dict[str, Any]]:
        payload = {"jql": sanitize(jql), "maxResults": limit, "fields": SEARCH_FIELDS}
        data = self._request("POST", "/rest/api/3/search/jql", json_body=payload)
        issues = data.get("issues") if isinstance(data, dict) else None
        if not isinstance(issues, list):
            return []
        return [_flatten_issue(item) for item in issues if isinstance(item, dict)]


def _retry_after(response: requests.Response) -> float | None:
    return parse_retry_after(response.headers.get("Retry-After"))


def _name(fields: Mapping[str, Any], key: str, attr: str = "name") -> str:
    value = fields.get(key)
    if isinstance(value, dict):
        return str(value.get(attr) or "")
    return ""


def _flatten_issue(item: Mapping[str, Any]) -> dict[str, Any]:
    fields = item.get("fields") or {}
    return {
        "key": str(item.get("key") or ""),
        "project": _name(fields, "project", "key"),
        "type": _name(fields, "issuetype"),
        "status": _name(fields, "status"),
        "priority": _name(fields, "priority"),
        "assignee": _name(fields, "assignee", "displayName"),
        "summary": str(fields.get("summary") or ""),
        "updated": str(fields.get("updated") or ""),
    }


__all__ = ["JiraAPIError", "JiraRestClient"]
