"""
Tests for the completion gateway's retry behaviour, using httpx.MockTransport.
"""

import json

import httpx
import pytest

from app.errors import CompletionError
from app.llm.gateway import CompletionGateway

MESSAGES = [{"role": "user", "content": "hello"}]


def completion(content):
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


class Script:
    """Replays responses (or raises exceptions) in order and records requests."""

    def __init__(self, *steps):
        self.steps = list(steps)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        step = self.steps.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


def gateway_for(script, sleeps=None, **kwargs):
    async def sleep(seconds):
        if sleeps is not None:
            sleeps.append(seconds)

    return CompletionGateway(
        api_key="test-key",
        api_url="https://completions.test/v1/chat/completions",
        model="test-model",
        transport=httpx.MockTransport(script),
        sleep=sleep,
        **kwargs,
    )


class TestComplete:

    @pytest.mark.asyncio
    async def test_returns_first_choice_text(self):
        script = Script(completion('{"ok": true}'))

        text = await gateway_for(script).complete(MESSAGES, response_format={"type": "json_object"})

        assert text == '{"ok": true}'
        body = json.loads(script.requests[0].content)
        assert body["model"] == "test-model"
        assert body["messages"] == MESSAGES
        assert body["response_format"] == {"type": "json_object"}
        assert script.requests[0].headers["Authorization"] == "Bearer test-key"

    @pytest.mark.asyncio
    async def test_options_forwarded(self):
        script = Script(completion("x"))

        await gateway_for(script).complete(MESSAGES, temperature=0.0, max_tokens=99)

        body = json.loads(script.requests[0].content)
        assert body["temperature"] == 0.0
        assert body["max_tokens"] == 99
        assert "response_format" not in body

    @pytest.mark.asyncio
    async def test_null_content_is_empty_text(self):
        script = Script(completion(None))
        assert await gateway_for(script).complete(MESSAGES) == ""

    def test_configured_only_with_key(self):
        assert CompletionGateway(api_key="k").is_configured() is True
        assert CompletionGateway(api_key="").is_configured() is False


class TestRetry:

    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(self):
        sleeps = []
        script = Script(
            httpx.Response(503, text="busy"),
            httpx.ConnectError("connection refused"),
            completion("third time lucky"),
        )

        text = await gateway_for(script, sleeps=sleeps).complete(MESSAGES)

        assert text == "third time lucky"
        assert len(script.requests) == 3
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausted_attempts_chain_last_failure(self):
        sleeps = []
        script = Script(
            httpx.Response(500),
            httpx.Response(502),
            httpx.ReadTimeout("read timed out"),
        )

        with pytest.raises(CompletionError) as exc:
            await gateway_for(script, sleeps=sleeps).complete(MESSAGES)

        assert isinstance(exc.value.__cause__, httpx.ReadTimeout)
        assert "read timed out" in exc.value.message
        assert exc.value.error_code == "ERR_COMPLETION"
        assert sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self):
        script = Script(httpx.Response(429), completion("ok"))
        assert await gateway_for(script).complete(MESSAGES) == "ok"

    @pytest.mark.asyncio
    async def test_bad_request_not_retried(self):
        script = Script(httpx.Response(400, json={"error": "bad"}), completion("never"))

        with pytest.raises(CompletionError) as exc:
            await gateway_for(script).complete(MESSAGES)

        assert exc.value.retryable is False
        assert len(script.requests) == 1

    @pytest.mark.asyncio
    async def test_malformed_body_retried(self):
        script = Script(httpx.Response(200, json={"choices": []}), completion("ok"))
        assert await gateway_for(script).complete(MESSAGES) == "ok"

    @pytest.mark.asyncio
    async def test_custom_attempts_and_delay(self):
        sleeps = []
        script = Script(httpx.Response(500), httpx.Response(500), httpx.Response(500), httpx.Response(500))

        with pytest.raises(CompletionError):
            await gateway_for(script, sleeps=sleeps, max_attempts=4, retry_delay=0.5).complete(MESSAGES)

        assert sleeps == [0.5, 1.0, 1.5]
