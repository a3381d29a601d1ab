import json

import httpx
import pytest

from airbitrage.clients.tavily import (
    TavilyClient,
    TavilyError,
    TavilyRateLimitError,
    TavilySchemaError,
    TavilyTimeoutError,
    TavilyUpstreamError,
)


def _client(handler) -> TavilyClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TavilyClient("tvly-test", base_url="https://tavily.test/", http_client=http)


@pytest.mark.asyncio
async def test_search_posts_query_and_parses_results():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "answer": "About $220",
                "results": [{"url": "https://www.ebay.com/itm/1", "title": "Sony $220"}, "junk"],
            },
        )

    client = _client(handler)
    response = await client.search(query="sony wh-1000xm5 sold price", max_results=3, include_answer=True)

    assert seen["url"] == "https://tavily.test/search"
    assert seen["auth"] == "Bearer tvly-test"
    assert seen["body"]["max_results"] == 3
    assert seen["body"]["include_answer"] is True
    assert response.results == [{"url": "https://www.ebay.com/itm/1", "title": "Sony $220"}]
    assert response.answer == "About $220"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "error_type", "code"),
    [
        (429, TavilyRateLimitError, "TAVILY_429"),
        (433, TavilyRateLimitError, "TAVILY_429"),
        (408, TavilyTimeoutError, "TAVILY_TIMEOUT"),
        (504, TavilyUpstreamError, "TAVILY_5XX"),
        (502, TavilyUpstreamError, "TAVILY_5XX"),
        (401, TavilyError, "TAVILY_ERROR"),
    ],
)
async def test_status_codes_map_to_errors(status, error_type, code):
    client = _client(lambda request: httpx.Response(status, json={"detail": "nope"}))

    with pytest.raises(error_type) as exc_info:
        await client.search(query="anything")

    assert exc_info.value.code == code


@pytest.mark.asyncio
async def test_client_error_message_includes_detail():
    client = _client(lambda request: httpx.Response(400, json={"detail": "Invalid API key"}))

    with pytest.raises(TavilyError, match="400 - Invalid API key"):
        await client.search(query="anything")


@pytest.mark.asyncio
async def test_bad_payloads_raise_schema_errors():
    with pytest.raises(TavilySchemaError):
        await _client(lambda request: httpx.Response(200, text="<html>")).search(query="x")
    with pytest.raises(TavilySchemaError):
        await _client(lambda request: httpx.Response(200, json={"results": "nope"})).search(query="x")


@pytest.mark.asyncio
async def test_transport_timeout_maps_to_timeout_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(TavilyTimeoutError):
        await _client(handler).search(query="x")


def test_requires_api_key():
    http = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    with pytest.raises(ValueError):
        TavilyClient("", http_client=http)


def test_only_pressure_errors_are_throttled():
    assert TavilyRateLimitError().throttled
    assert TavilyUpstreamError().throttled
    assert not TavilyTimeoutError().throttled
    assert not TavilyError("bad request").throttled
