from types import SimpleNamespace

import pytest

from airbitrage.clients.llm import (
    AnthropicMessagesClient,
    LLMConfigurationError,
    OpenAIToolClient,
    TextBlock,
    ToolSpec,
    ToolUseBlock,
    _to_chat_messages,
    build_llm_client,
)

TOOL = ToolSpec(
    name="search_sold_prices",
    description="Sold prices",
    input_schema={"type": "object", "properties": {"product_name": {"type": "string"}}},
)


class _Recorder:
    def __init__(self, response) -> None:
        self.response = response
        self.requests: list[dict] = []

    async def create(self, **request):
        self.requests.append(request)
        return self.response


def test_build_llm_client_requires_key_and_known_provider():
    with pytest.raises(LLMConfigurationError) as exc_info:
        build_llm_client("anthropic", "")
    assert exc_info.value.code == "400_MISSING_LLM_KEY"

    with pytest.raises(LLMConfigurationError) as exc_info:
        build_llm_client("mistral", "key")
    assert exc_info.value.code == "400_UNKNOWN_PROVIDER"

    assert isinstance(build_llm_client("OpenAI", "sk-test"), OpenAIToolClient)


@pytest.mark.asyncio
async def test_anthropic_response_is_normalized():
    client = AnthropicMessagesClient("sk-ant-test")
    recorder = _Recorder(
        SimpleNamespace(
            content=[
                SimpleNamespace(type="text", text="Looking up prices."),
                SimpleNamespace(type="tool_use", id="toolu_1", name="search_sold_prices", input={"product_name": "Aeron"}),
            ],
            stop_reason="tool_use",
            usage=SimpleNamespace(input_tokens=321, output_tokens=45),
        )
    )
    client._client = SimpleNamespace(messages=recorder)

    response = await client.create_message(
        model="claude-test",
        max_tokens=512,
        system="Be careful.",
        messages=[{"role": "user", "content": "Verify these leads."}],
        tools=[TOOL],
    )

    assert response.content == [
        TextBlock(text="Looking up prices."),
        ToolUseBlock(id="toolu_1", name="search_sold_prices", input={"product_name": "Aeron"}),
    ]
    assert response.wants_tool_use
    assert response.usage.total_tokens == 366
    (request,) = recorder.requests
    assert request["system"] == "Be careful."
    assert request["tools"][0]["input_schema"] == TOOL.input_schema


@pytest.mark.asyncio
async def test_openai_response_is_normalized():
    client = OpenAIToolClient("sk-test")
    call = SimpleNamespace(
        id="call_1",
        function=SimpleNamespace(name="search_sold_prices", arguments='{"product_name": "Aeron"}'),
    )
    recorder = _Recorder(
        SimpleNamespace(
            choices=[
                SimpleNamespace(
                    message=SimpleNamespace(content=None, tool_calls=[call]),
                    finish_reason="tool_calls",
                )
            ],
            usage=SimpleNamespace(prompt_tokens=100, completion_tokens=12),
        )
    )
    client._client = SimpleNamespace(chat=SimpleNamespace(completions=recorder))

    response = await client.create_message(
        model="gpt-test",
        max_tokens=512,
        system="Be careful.",
        messages=[{"role": "user", "content": "Verify."}],
        tools=[TOOL],
    )

    assert response.stop_reason == "tool_use"
    assert response.tool_uses == [ToolUseBlock(id="call_1", name="search_sold_prices", input={"product_name": "Aeron"})]
    assert response.usage.input_tokens == 100
    (request,) = recorder.requests
    assert request["messages"][0] == {"role": "system", "content": "Be careful."}
    assert request["tools"][0]["function"]["parameters"] == TOOL.input_schema


def test_tool_history_translates_to_chat_messages():
    history = [
        {"role": "user", "content": "Verify."},
        {
            "role": "assistant",
            "content": [
                {"type": "text", "text": "Checking."},
                {"type": "tool_use", "id": "toolu_1", "name": "search_sold_prices", "input": {"product_name": "Aeron"}},
            ],
        },
        {
            "role": "user",
            "content": [
                {"type": "tool_result", "tool_use_id": "toolu_1", "content": "Median $550", "is_error": False},
                {"type": "text", "text": "Tool limit reached."},
            ],
        },
    ]

    converted = _to_chat_messages(history)

    assert converted[0] == {"role": "user", "content": "Verify."}
    assert converted[1]["content"] == "Checking."
    assert converted[1]["tool_calls"][0]["function"]["arguments"] == '{"product_name": "Aeron"}'
    assert converted[2] == {"role": "tool", "tool_call_id": "toolu_1", "content": "Median $550"}
    assert converted[3] == {"role": "user", "content": "Tool limit reached."}
