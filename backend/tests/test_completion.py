import asyncio

import httpx
import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from x402_market.agents.completion import (
    ChatOpenAICompletionProvider,
    CompletionError,
    to_langchain_messages,
    usage_from_message,
)
from x402_market.config import DEFAULT_MODELS


class FakeChatModel:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.messages = None

    async def ainvoke(self, messages):
        self.messages = messages
        if self.error:
            raise self.error
        return self.result


def _provider(**kwargs):
    return ChatOpenAICompletionProvider(api_key="key", base_url="http://llm.test/v1/", **kwargs)


def test_messages_are_converted_by_role():
    converted = to_langchain_messages([
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
    ])
    assert [type(m) for m in converted] == [SystemMessage, HumanMessage, AIMessage]
    assert converted[1].content == "hi"


def test_usage_from_usage_metadata_and_token_usage():
    message = AIMessage(
        content="x",
        usage_metadata={"input_tokens": 3, "output_tokens": 4, "total_tokens": 7},
    )
    assert usage_from_message(message).total_tokens == 7

    legacy = AIMessage(
        content="x",
        response_metadata={"token_usage": {"prompt_tokens": 1, "completion_tokens": 2, "total_tokens": 3}},
    )
    usage = usage_from_message(legacy)
    assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (1, 2, 3)


def test_complete_returns_text_model_and_usage(monkeypatch):
    provider = _provider()
    fake = FakeChatModel(
        result=AIMessage(
            content="answer",
            usage_metadata={"input_tokens": 5, "output_tokens": 6, "total_tokens": 11},
            response_metadata={"model_name": "served-model"},
        )
    )
    created = {}

    def create_chat_model(model, max_tokens, temperature, request_id=None):
        created.update(model=model, max_tokens=max_tokens, request_id=request_id)
        return fake

    monkeypatch.setattr(provider, "create_chat_model", create_chat_model)

    completion = asyncio.run(
        provider.complete("asked-model", [{"role": "user", "content": "q"}], 64, 0.2, "req_1")
    )

    assert completion.text == "answer"
    assert completion.model == "served-model"
    assert completion.usage.total_tokens == 11
    assert created == {"model": "asked-model", "max_tokens": 64, "request_id": "req_1"}


def test_complete_wraps_backend_errors(monkeypatch):
    provider = _provider()
    monkeypatch.setattr(
        provider,
        "create_chat_model",
        lambda *args, **kwargs: FakeChatModel(error=RuntimeError("rate limited")),
    )

    with pytest.raises(CompletionError):
        asyncio.run(provider.complete("m", [{"role": "user", "content": "q"}]))


def test_complete_requires_api_key():
    provider = ChatOpenAICompletionProvider(api_key=None, base_url="http://llm.test/v1")
    with pytest.raises(CompletionError):
        asyncio.run(provider.complete("m", [{"role": "user", "content": "q"}]))


def test_create_chat_model_targets_configured_endpoint():
    llm = _provider().create_chat_model("m", 10, 0.5, request_id="req_9")
    assert llm.model_name == "m"
    assert llm.openai_api_base == "http://llm.test/v1"
    assert llm.default_headers == {"X-Request-ID": "req_9"}


def test_list_models_reads_ids():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        seen["url"] = str(request.url)
        return httpx.Response(200, json={"data": [{"id": "a"}, {"id": "b"}, {"name": "no-id"}]})

    provider = _provider(transport=httpx.MockTransport(handler))

    assert asyncio.run(provider.list_models()) == ["a", "b"]
    assert seen == {"auth": "Bearer key", "url": "http://llm.test/v1/models"}


@pytest.mark.parametrize(
    "handler",
    [
        lambda request: httpx.Response(500),
        lambda request: httpx.Response(200, text="not json"),
    ],
)
def test_list_models_falls_back_to_defaults(handler):
    provider = _provider(transport=httpx.MockTransport(handler))
    assert asyncio.run(provider.list_models()) == DEFAULT_MODELS
