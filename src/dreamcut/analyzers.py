"""Remote analyzer clients and per-domain fallback chains."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

import httpx

from .errors import AnalyzerFailure
from .schemas import ANALYSIS_DOMAINS, MediaAsset

LOG = logging.getLogger(__name__)

DEFAULT_DOMAINS_BY_MEDIA: Dict[str, Tuple[str, ...]] = {
    "image": ("vision",),
    "video": ("video",),
    "audio": ("audio",),
    "document": ("text",),
}


@dataclass(frozen=True)
class AnalyzerRequest:
    """Prompt context sent alongside an asset reference."""

    domain: str
    query: str
    intent: str
    prompt: str
    user_description: Optional[str] = None

    @classmethod
    def build(cls, *, domain: str, query: str, intent: str, asset: MediaAsset) -> "AnalyzerRequest":
        return cls(
            domain=domain,
            query=query,
            intent=intent,
            prompt=f"ANALYZE USER INTENT AND PURPOSE: {query}".strip(),
            user_description=asset.description,
        )


class Analyzer(Protocol):
    name: str

    async def analyze(self, asset: MediaAsset, request: AnalyzerRequest) -> Mapping[str, Any]:
        ...


class HttpAnalyzer:
    """Analyzer backed by a remote HTTP endpoint.

    Timeouts, transport errors, non-2xx responses and non-object JSON bodies
    all raise `AnalyzerFailure`.
    """

    def __init__(
        self,
        name: str,
        url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self.name = name
        self.url = url
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._client = client

    async def analyze(self, asset: MediaAsset, request: AnalyzerRequest) -> Mapping[str, Any]:
        body = {
            "assetId": asset.id,
            "assetUrl": asset.url,
            "mediaType": asset.media_type,
            "domain": request.domain,
            "prompt": request.prompt,
            "query": request.query,
            "intent": request.intent,
            "userDescription": request.user_description,
        }
        if self._client is not None:
            return await self._post(self._client, body)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._post(client, body)

    async def _post(self, client: httpx.AsyncClient, body: Dict[str, Any]) -> Mapping[str, Any]:
        try:
            response = await client.post(self.url, json=body, headers=self.headers, timeout=self.timeout)
        except httpx.TimeoutException as exc:
            raise AnalyzerFailure(f"{self.name} timed out after {self.timeout}s", analyzer=self.name) from exc
        except httpx.HTTPError as exc:
            raise AnalyzerFailure(f"{self.name} transport error: {exc}", analyzer=self.name) from exc
        if not 200 <= response.status_code < 300:
            raise AnalyzerFailure(
                f"{self.name} returned HTTP {response.status_code}",
                analyzer=self.name,
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise AnalyzerFailure(f"{self.name} returned malformed JSON", analyzer=self.name) from exc
        if not isinstance(payload, dict):
            raise AnalyzerFailure(f"{self.name} returned {type(payload).__name__}, expected object", analyzer=self.name)
        return payload


AnalyzeFn = Callable[[MediaAsset, AnalyzerRequest], Union[Mapping[str, Any], Awaitable[Mapping[str, Any]]]]


class CallableAnalyzer:
    """Adapts a plain (sync or async) function to the analyzer interface."""

    def __init__(self, name: str, fn: AnalyzeFn) -> None:
        self.name = name
        self._fn = fn

    async def analyze(self, asset: MediaAsset, request: AnalyzerRequest) -> Mapping[str, Any]:
        result = self._fn(asset, request)
        if inspect.isawaitable(result):
            result = await result
        return result


class FixtureAnalyzer:
    """Deterministic local analyzer derived from asset metadata only."""

    def __init__(self, name: str = "fixture", *, delay_s: float = 0.0) -> None:
        self.name = name
        self.delay_s = delay_s

    async def analyze(self, asset: MediaAsset, request: AnalyzerRequest) -> Mapping[str, Any]:
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        meta = asset.metadata
        summary: Dict[str, Any] = {
            "domain": request.domain,
            "media_type": asset.media_type,
            "caption": request.user_description or (meta.filename or asset.url.rsplit("/", 1)[-1]),
        }
        if meta.width and meta.height:
            summary["resolution"] = {"width": meta.width, "height": meta.height}
            summary["orientation"] = "portrait" if meta.height > meta.width else ("square" if meta.height == meta.width else "landscape")
        if meta.duration_s is not None:
            summary["duration_s"] = meta.duration_s
        return summary


@dataclass
class AnalyzerChain:
    """Primary analyzer followed by fallbacks, tried in declared order."""

    domain: str
    analyzers: List[Analyzer] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.domain not in ANALYSIS_DOMAINS:
            raise ValueError(f"Unknown analysis domain {self.domain!r}")
        if not self.analyzers:
            raise ValueError(f"Analyzer chain for {self.domain!r} needs at least one analyzer")

    @property
    def primary(self) -> Analyzer:
        return self.analyzers[0]

    @property
    def fallbacks(self) -> List[Analyzer]:
        return list(self.analyzers[1:])


class AnalyzerRegistry:
    """Maps analysis domains to analyzer chains and media kinds to domains.

    `client` is an HTTP client the registry owns and closes in `aclose()`.
    """

    def __init__(
        self,
        chains: Sequence[AnalyzerChain],
        *,
        domains_by_media: Optional[Mapping[str, Sequence[str]]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.client = client
        self.chains: Dict[str, AnalyzerChain] = {}
        for chain in chains:
            if chain.domain in self.chains:
                raise ValueError(f"Duplicate analyzer chain for domain {chain.domain!r}")
            self.chains[chain.domain] = chain
        source = domains_by_media if domains_by_media is not None else DEFAULT_DOMAINS_BY_MEDIA
        self.domains_by_media: Dict[str, Tuple[str, ...]] = {kind: tuple(domains) for kind, domains in source.items()}

    def domains_for(self, asset: MediaAsset) -> List[str]:
        """Domains applicable to the asset that also have a configured chain."""
        applicable = self.domains_by_media.get(asset.media_type, ())
        missing = [domain for domain in applicable if domain not in self.chains]
        if missing:
            LOG.debug("no analyzer chain configured for %s (asset %s)", ", ".join(missing), asset.id)
        return [domain for domain in applicable if domain in self.chains]

    def chain(self, domain: str) -> AnalyzerChain:
        return self.chains[domain]

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None

    @classmethod
    def from_config(
        cls,
        table: Mapping[str, Sequence[Mapping[str, Any]]],
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> "AnalyzerRegistry":
        """Build HTTP analyzer chains from a domain -> endpoint list table.

        Every analyzer shares one connection pool. A caller-supplied `client`
        stays the caller's to close; otherwise the registry creates and owns one.
        """
        owned = httpx.AsyncClient(timeout=timeout) if client is None else None
        shared = client if client is not None else owned
        chains: List[AnalyzerChain] = []
        for domain, entries in table.items():
            analyzers: List[Analyzer] = []
            for index, entry in enumerate(entries):
                name = str(entry.get("name") or f"{domain}-{index}")
                analyzers.append(
                    HttpAnalyzer(
                        name,
                        str(entry["url"]),
                        client=shared,
                        timeout=float(entry.get("timeout", timeout)),
                        headers=entry.get("headers"),
                    )
                )
            chains.append(AnalyzerChain(domain=domain, analyzers=analyzers))
        return cls(chains, client=owned)

    @classmethod
    def fixtures(cls) -> "AnalyzerRegistry":
        return cls([AnalyzerChain(domain=domain, analyzers=[FixtureAnalyzer(f"{domain}-fixture")]) for domain in ANALYSIS_DOMAINS])


__all__ = [
    "DEFAULT_DOMAINS_BY_MEDIA",
    "AnalyzerRequest",
    "Analyzer",
    "HttpAnalyzer",
    "CallableAnalyzer",
    "FixtureAnalyzer",
    "AnalyzerChain",
    "AnalyzerRegistry",
]
