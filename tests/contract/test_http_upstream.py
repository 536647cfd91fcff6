"""Contract tests for the direct HTTPS upstream client (httpx.MockTransport, no network)."""

import asyncio
import json

import httpx
import pytest

from qwen_gateway.config import Settings
from qwen_gateway.errors import UpstreamError
from qwen_gateway.inference_service import TIMED_OUT, InferenceUpstreamClient
from qwen_gateway.llm_service import HttpUpstreamClient, build_upstream_client
from qwen_gateway.schemas import CompletionChoice, GeneratedText, ImagePart, TextPart, UpstreamMessage


def make_client(settings, handler):
    return HttpUpstreamClient(settings, transport=httpx.MockTransport(handler))


@pytest.fixture
def message():
    return UpstreamMessage(content=[TextPart(text="hello"), ImagePart(image_url="http://x/y.png")])


class TestRequest:

    @pytest.mark.asyncio
    async def test_posts_structured_content(self, settings, message):
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=[{"generated_text": "hi"}])

        client = make_client(settings, handler)
        await client.complete([message])
        await client.aclose()

        assert seen["url"] == "https://qwen.test/on_example"
        assert seen["auth"] == "Bearer test-key"
        assert seen["body"] == {
            "model": "qwen-test",
            "input": {
                "messages": [
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": "hello"},
                            {"type": "image_url", "image_url": "http://x/y.png"},
                        ],
                    }
                ]
            },
            "parameters": {"max_new_tokens": 1024, "temperature": 0.7, "do_sample": True},
        }

    @pytest.mark.asyncio
    async def test_history_items_sent_unchanged(self, settings):
        history = [{"role": "user", "content": "hi", "name": "alice"}, {"role": "assistant", "content": "yo"}]
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"generated_text": "ok"})

        client = make_client(settings, handler)
        await client.complete(history)
        assert seen["body"]["input"]["messages"] == history

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self, settings):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"generated_text": "ok"})

        client = make_client(settings.model_copy(update={"QWEN_API_KEY": None}), handler)
        await client.complete([])
        assert seen["auth"] is None


class TestResponse:

    @pytest.mark.asyncio
    async def test_generated_text(self, settings, message):
        client = make_client(settings, lambda r: httpx.Response(200, json=[{"generated_text": "hi"}]))
        result = await client.complete([message])
        assert result == GeneratedText(text="hi", model="qwen-test")

    @pytest.mark.asyncio
    async def test_completion_choice(self, settings, message):
        body = {"model": "qwen-vl", "choices": [{"message": {"role": "assistant", "content": "a cat"}}]}
        client = make_client(settings, lambda r: httpx.Response(200, json=body))
        result = await client.complete([message])
        assert isinstance(result, CompletionChoice)
        assert result.reply_text() == "a cat"
        assert result.model == "qwen-vl"

    @pytest.mark.asyncio
    async def test_error_status_and_body_propagated(self, settings, message):
        body = '{"code": "Throttling", "message": "Requests rate limit exceeded"}'
        client = make_client(settings, lambda r: httpx.Response(429, text=body))
        with pytest.raises(UpstreamError) as exc:
            await client.complete([message])
        assert exc.value.status_code == 429
        assert exc.value.details == body

    @pytest.mark.asyncio
    async def test_server_error(self, settings, message):
        client = make_client(settings, lambda r: httpx.Response(503, text="unavailable"))
        with pytest.raises(UpstreamError) as exc:
            await client.complete([message])
        assert exc.value.status_code == 503
        assert exc.value.details == "unavailable"

    @pytest.mark.asyncio
    async def test_transport_error_is_500(self, settings, message):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(settings, handler)
        with pytest.raises(UpstreamError) as exc:
            await client.complete([message])
        assert exc.value.status_code == 500
        assert exc.value.details == "connection refused"

    @pytest.mark.asyncio
    async def test_timeout_is_500(self, settings, message):
        def handler(request):
            raise httpx.ReadTimeout("", request=request)

        client = make_client(settings, handler)
        with pytest.raises(UpstreamError) as exc:
            await client.complete([message])
        assert exc.value.status_code == 500
        assert exc.value.details == "ReadTimeout"

    @pytest.mark.asyncio
    async def test_slow_upstream_bounded_by_total_timeout(self, settings, message):
        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(200, json={"generated_text": "too late"})

        client = make_client(settings.model_copy(update={"UPSTREAM_TIMEOUT": 0.01}), handler)
        with pytest.raises(UpstreamError) as exc:
            await client.complete([message])
        assert exc.value.status_code == 500
        assert exc.value.details == TIMED_OUT

    @pytest.mark.asyncio
    async def test_non_json_body(self, settings, message):
        client = make_client(settings, lambda r: httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(UpstreamError) as exc:
            await client.complete([message])
        assert exc.value.details == "Malformed response from upstream model"


class TestFactory:

    @pytest.mark.asyncio
    async def test_http_backend(self, settings):
        client = build_upstream_client(settings)
        assert isinstance(client, HttpUpstreamClient)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_inference_backend(self, settings):
        client = build_upstream_client(settings.model_copy(update={"UPSTREAM_BACKEND": "inference"}))
        assert isinstance(client, InferenceUpstreamClient)
        await client.aclose()
