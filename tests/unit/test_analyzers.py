from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List

import httpx
import pytest

from dreamcut.analyzers import (
    AnalyzerChain,
    AnalyzerRegistry,
    AnalyzerRequest,
    CallableAnalyzer,
    FixtureAnalyzer,
    HttpAnalyzer,
)
from dreamcut.errors import AnalyzerFailure
from dreamcut.schemas import MediaAsset

ASSET = MediaAsset(
    id="a1",
    url="https://cdn.example.com/a.png",
    media_type="image",
    metadata={"description": "blue logo on white background", "width": 640, "height": 480},
)


def _request() -> AnalyzerRequest:
    return AnalyzerRequest.build(domain="vision", query="launch teaser", intent="video", asset=ASSET)


def _run_http(handler) -> Dict[str, Any]:
    async def _go() -> Dict[str, Any]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            analyzer = HttpAnalyzer("vision-primary", "https://analyzer.test/vision", client=client, timeout=1.0)
            return dict(await analyzer.analyze(ASSET, _request()))

    return asyncio.run(_go())


def test_request_prompt_carries_query_and_description() -> None:
    req = _request()
    assert req.prompt == "ANALYZE USER INTENT AND PURPOSE: launch teaser"
    assert req.user_description == "blue logo on white background"


def test_http_analyzer_posts_asset_reference_and_prompt() -> None:
    seen: List[Dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"caption": "a logo"})

    assert _run_http(handler) == {"caption": "a logo"}
    body = seen[0]
    assert body["assetId"] == "a1"
    assert body["assetUrl"] == ASSET.url
    assert body["domain"] == "vision"
    assert body["userDescription"] == "blue logo on white background"


@pytest.mark.parametrize(
    "response, message",
    [
        (httpx.Response(503, text="busy"), "HTTP 503"),
        (httpx.Response(200, text="not json"), "malformed JSON"),
        (httpx.Response(200, json=["a", "list"]), "expected object"),
    ],
)
def test_http_analyzer_failures_raise_analyzer_failure(response: httpx.Response, message: str) -> None:
    with pytest.raises(AnalyzerFailure) as excinfo:
        _run_http(lambda request: response)
    assert message in str(excinfo.value)
    assert excinfo.value.analyzer == "vision-primary"


def test_http_analyzer_timeout_is_a_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(AnalyzerFailure, match="timed out"):
        _run_http(handler)


def test_callable_analyzer_supports_sync_and_async() -> None:
    async def async_fn(asset: MediaAsset, request: AnalyzerRequest) -> Dict[str, Any]:
        return {"async": asset.id}

    sync = CallableAnalyzer("sync", lambda asset, request: {"sync": asset.id})
    coro = CallableAnalyzer("async", async_fn)
    assert asyncio.run(sync.analyze(ASSET, _request())) == {"sync": "a1"}
    assert asyncio.run(coro.analyze(ASSET, _request())) == {"async": "a1"}


def test_fixture_analyzer_uses_metadata_only() -> None:
    value = asyncio.run(FixtureAnalyzer().analyze(ASSET, _request()))
    assert value["caption"] == "blue logo on white background"
    assert value["orientation"] == "landscape"
    assert value["resolution"] == {"width": 640, "height": 480}


def test_chain_requires_known_domain_and_an_analyzer() -> None:
    with pytest.raises(ValueError):
        AnalyzerChain(domain="smell", analyzers=[FixtureAnalyzer()])
    with pytest.raises(ValueError):
        AnalyzerChain(domain="vision", analyzers=[])


def test_registry_routes_media_kinds_to_configured_domains() -> None:
    registry = AnalyzerRegistry([AnalyzerChain(domain="vision", analyzers=[FixtureAnalyzer()])])
    audio = MediaAsset(id="s1", url="https://cdn.example.com/a.mp3", media_type="audio")
    assert registry.domains_for(ASSET) == ["vision"]
    assert registry.domains_for(audio) == []


def test_registry_from_config_keeps_declared_order() -> None:
    registry = AnalyzerRegistry.from_config(
        {
            "vision": [
                {"name": "primary", "url": "https://a.test/v"},
                {"name": "backup", "url": "https://b.test/v", "timeout": 5},
            ]
        }
    )
    chain = registry.chain("vision")
    assert chain.primary.name == "primary"
    assert [a.name for a in chain.fallbacks] == ["backup"]


def test_registry_from_config_shares_one_owned_client() -> None:
    registry = AnalyzerRegistry.from_config(
        {
            "vision": [{"url": "https://a.test/v"}, {"url": "https://b.test/v"}],
            "audio": [{"url": "https://a.test/a"}],
        }
    )
    shared = registry.client
    assert shared is not None
    assert all(analyzer._client is shared for chain in registry.chains.values() for analyzer in chain.analyzers)
    asyncio.run(registry.aclose())
    assert shared.is_closed
    assert registry.client is None


def test_caller_supplied_client_is_reused_and_left_open() -> None:
    hosts: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        hosts.append(request.url.host)
        return httpx.Response(503 if request.url.host == "a.test" else 200, json={"caption": "ok"})

    async def scenario() -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        registry = AnalyzerRegistry.from_config(
            {"vision": [{"name": "primary", "url": "https://a.test/v"}, {"name": "backup", "url": "https://b.test/v"}]},
            client=client,
        )
        assert registry.client is None
        chain = registry.chain("vision")
        with pytest.raises(AnalyzerFailure):
            await chain.primary.analyze(ASSET, _request())
        assert await chain.fallbacks[0].analyze(ASSET, _request()) == {"caption": "ok"}
        await registry.aclose()
        assert not client.is_closed
        await client.aclose()
        return client

    client = asyncio.run(scenario())
    assert client.is_closed
    assert hosts == ["a.test", "b.test"]
