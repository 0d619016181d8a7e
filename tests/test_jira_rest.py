from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import pytest
import requests

from issuechat.adf import markdown_to_adf
from issuechat.jira_rest import JiraAPIError, JiraRestClient
from issuechat.models import IssueDraft
from issuechat.retry import RetryConfig

BASE = "https://acme.atlassian.net"


@dataclass
class _DummyResponse:
    status_code: int
    payload: Any
    headers: dict[str, str] = field(default_factory=dict)

    def json(self) -> Any:
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload

    @property
    def text(self) -> str:
        if isinstance(self.payload, (dict, list)):
            return json.dumps(self.payload)
        return str(self.payload)


class _DummySession:
    def __init__(self, responses: list[Any]):
        self._responses = responses
        self.request_log: list[tuple[str, str, Any]] = []
        self.headers: dict[str, str] = {}
        self.auth: Any = None

    def request(self, method: str, url: str, *, json: Any | None = None, timeout: float | None = None):
        self.request_log.append((method, url, json))
        if not self._responses:
            raise AssertionError("No response queued for request")
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _client(responses: list[Any], attempts: int = 3) -> tuple[JiraRestClient, _DummySession]:
    session = _DummySession(responses)
    client = JiraRestClient(
        BASE + "/",
        "bot@acme.test",
        "token",
        retry=RetryConfig(attempts=attempts, base_sleep=0),
        session=session,  # type: ignore[arg-type]
    )
    return client, session


def test_create_issue_payload_and_result():
    client, session = _client([_DummyResponse(201, {"id": "10001", "key": "BE-7"})])
    draft = IssueDraft(
        project=" BE ", issue_type="Bug", summary="Login", priority="High", labels=["auth"]
    )
    doc = markdown_to_adf("texto")
    created = client.create_issue(draft, doc)

    assert (created.key, created.id, created.url) == ("BE-7", "10001", f"{BASE}/browse/BE-7")
    method, url, body = session.request_log[0]
    assert method == "POST"
    assert url == f"{BASE}/rest/api/3/issue"
    fields = body["fields"]
    assert fields["project"] == {"key": "BE"}
    assert fields["issuetype"] == {"name": "Bug"}
    assert fields["summary"] == "Login"
    assert fields["priority"] == {"name": "High"}
    assert fields["labels"] == ["auth"]
    assert fields["description"] == doc
    assert session.auth == ("bot@acme.test", "token")


def test_create_issue_omits_empty_optional_fields():
    client, session = _client([_DummyResponse(201, {"id": "1", "key": "BE-1"})])
    client.create_issue(IssueDraft(project="BE", issue_type="Task", summary="S"), markdown_to_adf(""))
    fields = session.request_log[0][2]["fields"]
    assert "priority" not in fields
    assert "labels" not in fields


def test_create_issue_requires_project_and_type():
    client, session = _client([])
    with pytest.raises(JiraAPIError):
        client.create_issue(IssueDraft(summary="S"), markdown_to_adf(""))
    assert session.request_log == []


def test_http_error_raises_with_status():
    client, _ = _client([_DummyResponse(400, {"errors": {"summary": "required"}})])
    with pytest.raises(JiraAPIError) as excinfo:
        client.create_issue(IssueDraft(project="BE", issue_type="Bug", summary="S"), markdown_to_adf(""))
    assert excinfo.value.status == 400
    assert excinfo.value.service == "jira"
    assert "status=400" in str(excinfo.value)


def test_transient_status_is_retried():
    client, session = _client(
        [
            _DummyResponse(503, "unavailable"),
            _DummyResponse(429, "slow down", headers={"Retry-After": "0"}),
            _DummyResponse(201, {"id": "1", "key": "BE-2"}),
        ]
    )
    created = client.create_issue(IssueDraft(project="BE", issue_type="Bug", summary="S"), markdown_to_adf(""))
    assert created.key == "BE-2"
    assert len(session.request_log) == 3


def test_transient_exhaustion_is_marked_transient():
    client, _ = _client([requests.ConnectionError("reset"), requests.ConnectionError("reset")], attempts=2)
    with pytest.raises(JiraAPIError) as excinfo:
        client.search("project = BE")
    assert excinfo.value.transient is True


def test_search_sanitizes_and_flattens():
    payload = {
        "issues": [
            {
                "key": "BE-1",
                "fields": {
                    "summary": "Login",
                    "status": {"name": "To Do"},
                    "issuetype": {"name": "Bug"},
                    "priority": {"name": "High"},
                    "assignee": {"displayName": "Ana"},
                    "project": {"key": "BE"},
                    "updated": "2024-01-01T00:00:00.000+0000",
                },
            },
            {"key": "BE-2", "fields": {"summary": "Sem campos"}},
        ]
    }
    client, session = _client([_DummyResponse(200, payload)])
    issues = client.search('project = BE AND text ~ "a" OR text ~ "b"', limit=5)

    body = session.request_log[0][2]
    assert session.request_log[0][1] == f"{BASE}/rest/api/3/search/jql"
    assert body["jql"] == 'project = BE AND (text ~ "a" OR text ~ "b")'
    assert body["maxResults"] == 5
    assert issues[0] == {
        "key": "BE-1",
        "project": "BE",
        "type": "Bug",
        "status": "To Do",
        "priority": "High",
        "assignee": "Ana",
        "summary": "Login",
        "updated": "2024-01-01T00:00:00.000+0000",
    }
    assert issues[1]["status"] == ""


def test_missing_credentials():
    client = JiraRestClient(BASE, "", "", session=_DummySession([]))  # type: ignore[arg-type]
    with pytest.raises(JiraAPIError):
        client.search("project = BE")
