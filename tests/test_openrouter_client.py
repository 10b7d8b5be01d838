"""Tests for the OpenRouter client: one POST per invocation, failures mapped to TransportError.

Tests cover:
- Successful completion returns the assistant content
- Request payload (model, messages, response_format, timeout)
- 429 / 5xx / timeouts / connection errors are retryable TransportErrors
- Other non-2xx and a missing API key are non-retryable
- 200 responses without choices
- OpenRouterInvoker renders ChatRequests (retry turns, model override)
"""

import pytest
import requests

from schemaguard.errors import TransportError
from schemaguard.extraction import compile_request
from schemaguard.records import Violation
from schemaguard.shared import openrouter_client
from schemaguard.shared.openrouter_client import (
    OpenRouterInvoker,
    build_response_format,
    call_chat_completion,
)


class FakeResponse:
    def __init__(self, status_code, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


def _completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


MESSAGES = [{"role": "user", "content": "hi"}]


class _Calls(list):
    pass


@pytest.fixture
def captured(monkeypatch):
    calls = _Calls()
    calls.responses = []

    def _post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        response = calls.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    monkeypatch.setattr(openrouter_client.requests, "post", _post)
    return calls


class TestCallChatCompletion:
    def test_success(self, captured) -> None:
        captured.responses.append(FakeResponse(200, _completion('{"a": 1}')))
        content = call_chat_completion(
            MESSAGES, model="openai/gpt-4o-mini", api_key="k",
            base_url="https://example.test/v1", timeout=12.0,
        )

        assert content == '{"a": 1}'
        call = captured[0]
        assert call["url"] == "https://example.test/v1/chat/completions"
        assert call["headers"]["Authorization"] == "Bearer k"
        assert call["timeout"] == 12.0
        assert call["json"]["model"] == "openai/gpt-4o-mini"
        assert call["json"]["messages"] == MESSAGES
        assert "response_format" not in call["json"]

    def test_response_format_forwarded(self, captured) -> None:
        captured.responses.append(FakeResponse(200, _completion("{}")))
        call_chat_completion(MESSAGES, "m", api_key="k", response_format={"type": "json_object"})
        assert captured[0]["json"]["response_format"] == {"type": "json_object"}

    def test_null_content_is_empty_string(self, captured) -> None:
        captured.responses.append(FakeResponse(200, _completion(None)))
        assert call_chat_completion(MESSAGES, "m", api_key="k") == ""

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_retryable_status(self, captured, status) -> None:
        captured.responses.append(FakeResponse(status, text="busy"))
        with pytest.raises(TransportError) as exc_info:
            call_chat_completion(MESSAGES, "m", api_key="k")
        assert exc_info.value.status_code == status
        assert exc_info.value.retryable

    def test_client_error_not_retryable(self, captured) -> None:
        captured.responses.append(
            FakeResponse(400, {"error": {"message": "invalid model"}}, text="bad")
        )
        with pytest.raises(TransportError, match="invalid model") as exc_info:
            call_chat_completion(MESSAGES, "m", api_key="k")
        assert exc_info.value.status_code == 400
        assert not exc_info.value.retryable

    def test_client_error_without_json_body(self, captured) -> None:
        captured.responses.append(FakeResponse(404, None, text="not found"))
        with pytest.raises(TransportError, match="not found"):
            call_chat_completion(MESSAGES, "m", api_key="k")

    def test_timeout(self, captured) -> None:
        captured.responses.append(requests.Timeout("read timed out"))
        with pytest.raises(TransportError, match="timed out") as exc_info:
            call_chat_completion(MESSAGES, "m", api_key="k", timeout=3)
        assert exc_info.value.retryable

    def test_connection_error(self, captured) -> None:
        captured.responses.append(requests.ConnectionError("refused"))
        with pytest.raises(TransportError, match="refused"):
            call_chat_completion(MESSAGES, "m", api_key="k")

    def test_200_without_choices(self, captured) -> None:
        captured.responses.append(FakeResponse(200, {"error": {"message": "overloaded"}}))
        with pytest.raises(TransportError, match="overloaded") as exc_info:
            call_chat_completion(MESSAGES, "m", api_key="k")
        assert exc_info.value.status_code == 200
        assert exc_info.value.retryable

    def test_malformed_200_body(self, captured) -> None:
        captured.responses.append(FakeResponse(200, None, text="<html>"))
        with pytest.raises(TransportError, match="Malformed"):
            call_chat_completion(MESSAGES, "m", api_key="k")

    def test_missing_api_key(self, captured, monkeypatch) -> None:
        monkeypatch.setattr(openrouter_client, "OPENROUTER_API_KEY", None)
        with pytest.raises(TransportError, match="OPENROUTER_API_KEY") as exc_info:
            call_chat_completion(MESSAGES, "m")
        assert not exc_info.value.retryable
        assert captured == []


class TestResponseFormat:
    def test_modes(self, receipt) -> None:
        request = compile_request(receipt, "x")
        assert build_response_format(request, "json_object") == {"type": "json_object"}
        assert build_response_format(request, "none") is None

        schema_format = build_response_format(request, "json_schema")
        assert schema_format["type"] == "json_schema"
        assert schema_format["json_schema"]["name"] == "Receipt"
        assert schema_format["json_schema"]["strict"] is False
        assert schema_format["json_schema"]["schema"]["title"] == "Receipt"


class TestInvoker:
    def test_renders_retry_request(self, captured, receipt) -> None:
        captured.responses.append(FakeResponse(200, _completion("{}")))
        request = compile_request(
            receipt, "Extract.",
            prior_violations=[Violation("subtotal", "aggregate_mismatch", "off")],
            prior_response="{}",
            model="openai/gpt-4o",
        )
        invoker = OpenRouterInvoker(
            model="default/model", api_key="k", response_format_mode="json_object"
        )

        assert invoker(request, 9.0) == "{}"
        payload = captured[0]["json"]
        assert payload["model"] == "openai/gpt-4o"
        assert [m["role"] for m in payload["messages"]] == ["system", "user", "assistant", "user"]
        assert payload["response_format"] == {"type": "json_object"}
        assert captured[0]["timeout"] == 9.0

    def test_falls_back_to_default_model(self, captured, receipt) -> None:
        captured.responses.append(FakeResponse(200, _completion("{}")))
        invoker = OpenRouterInvoker(model="default/model", api_key="k", response_format_mode="none")
        invoker(compile_request(receipt, "x"), 5.0)
        assert captured[0]["json"]["model"] == "default/model"
        assert "response_format" not in captured[0]["json"]
