from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence

from . import telemetry
from .analyzers import Analyzer, AnalyzerChain, AnalyzerRegistry, AnalyzerRequest
from .cancellation import CancellationToken
from .errors import FanoutCancelled
from .schemas import AnalysisMap, AnalysisOutcome, AnalysisResult, MediaAsset

LOG = logging.getLogger(__name__)


class AnalysisFanout:
    """Runs every (asset, domain) analysis concurrently with per-domain fallback.

    Failures are recorded per entry and never abort the rest of the fanout.
    Cancellation through the token abandons in-flight calls and raises
    `FanoutCancelled` instead of returning partial results.
    """

    def __init__(
        self,
        registry: AnalyzerRegistry,
        *,
        concurrency: int = 8,
        call_timeout_s: Optional[float] = 30.0,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.registry = registry
        self.concurrency = concurrency
        self.call_timeout_s = call_timeout_s

    async def analyze(
        self,
        assets: Sequence[MediaAsset],
        *,
        query: str = "",
        intent: str = "mix",
        token: Optional[CancellationToken] = None,
    ) -> AnalysisMap:
        token = token or CancellationToken()
        token.raise_if_cancelled()
        semaphore = asyncio.Semaphore(self.concurrency)
        tasks: List[asyncio.Task[AnalysisResult]] = []
        for asset in assets:
            for domain in self.registry.domains_for(asset):
                request = AnalyzerRequest.build(domain=domain, query=query, intent=intent, asset=asset)
                chain = self.registry.chain(domain)
                tasks.append(asyncio.create_task(self._run_chain(asset, chain, request, semaphore, token)))
        telemetry.emit_event(
            "analysis.fanout.start",
            {"token_id": token.token_id, "assets": len(assets), "calls": len(tasks)},
        )
        if not tasks:
            return AnalysisMap()

        gathered = asyncio.gather(*tasks)
        cancel_waiter = asyncio.create_task(token.wait())
        try:
            await asyncio.wait({gathered, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            await self._abandon(tasks, gathered)
            raise
        finally:
            cancel_waiter.cancel()

        if token.cancelled:
            await self._abandon(tasks, gathered)
            LOG.info("analysis fanout cancelled", extra={"token_id": token.token_id, "reason": token.reason})
            telemetry.emit_event("analysis.fanout.cancelled", {"token_id": token.token_id, "reason": token.reason})
            raise FanoutCancelled(token.reason or "cancelled")

        analysis = _build_map(gathered.result())
        summary = analysis.summary()
        LOG.info("analysis fanout complete", extra={"token_id": token.token_id, **summary})
        telemetry.emit_event("analysis.fanout.complete", {"token_id": token.token_id, **summary})
        return analysis

    async def _run_chain(
        self,
        asset: MediaAsset,
        chain: AnalyzerChain,
        request: AnalyzerRequest,
        semaphore: asyncio.Semaphore,
        token: CancellationToken,
    ) -> AnalysisResult:
        attempts: List[AnalysisOutcome] = []
        for analyzer in chain.analyzers:
            token.raise_if_cancelled()
            async with semaphore:
                token.raise_if_cancelled()
                outcome = await self._invoke(analyzer, asset, request)
            attempts.append(outcome)
            if outcome.success:
                break
            LOG.warning(
                "analyzer %s failed for %s/%s: %s",
                analyzer.name,
                chain.domain,
                asset.id,
                outcome.error,
            )
        primary = attempts[0]
        fallback = attempts[-1] if len(attempts) > 1 else None
        if fallback is not None and fallback.success:
            telemetry.emit_event(
                "analysis.fallback_used",
                {"asset_id": asset.id, "domain": chain.domain, "analyzer": fallback.analyzer},
            )
        return AnalysisResult(
            domain=chain.domain,
            asset_id=asset.id,
            asset_url=asset.url,
            primary=primary,
            fallback=fallback,
            attempts=attempts,
        )

    async def _invoke(self, analyzer: Analyzer, asset: MediaAsset, request: AnalyzerRequest) -> AnalysisOutcome:
        started = time.perf_counter()
        error: Optional[str] = None
        value: Optional[Dict[str, Any]] = None
        try:
            call = analyzer.analyze(asset, request)
            if self.call_timeout_s:
                payload = await asyncio.wait_for(call, timeout=self.call_timeout_s)
            else:
                payload = await call
        except asyncio.TimeoutError:
            error = f"timed out after {self.call_timeout_s}s"
        except Exception as exc:
            error = str(exc) or type(exc).__name__
        else:
            if isinstance(payload, Mapping):
                value = dict(payload)
            else:
                error = f"malformed payload: expected mapping, got {type(payload).__name__}"
        elapsed = max(time.perf_counter() - started, 0.0)
        if error is not None:
            return AnalysisOutcome(analyzer=analyzer.name, success=False, error=error, processing_time_s=elapsed)
        return AnalysisOutcome(analyzer=analyzer.name, success=True, value=value, processing_time_s=elapsed)

    @staticmethod
    async def _abandon(tasks: Sequence[asyncio.Task[Any]], gathered: "asyncio.Future[Any]") -> None:
        for task in tasks:
            task.cancel()
        if gathered.done():
            if not gathered.cancelled():
                gathered.exception()
        else:
            gathered.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def _build_map(results: Sequence[AnalysisResult]) -> AnalysisMap:
    table: Dict[str, Dict[str, AnalysisResult]] = {}
    for result in results:
        per_domain = table.setdefault(result.domain, {})
        key = result.asset_url
        existing = per_domain.get(key)
        if existing is not None and existing.asset_id != result.asset_id:
            # two assets share a url; keep both entries addressable
            key = f"{result.asset_url}#{result.asset_id}"
        per_domain[key] = result
    return AnalysisMap(results=table)


__all__ = ["AnalysisFanout"]
