"""Diagnostics that spend no search or model budget."""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from typing import Any

import httpx
from fastapi import APIRouter, Depends

from airbitrage.config import settings
from airbitrage.core.credentials import ApiKeys, get_api_keys
from pipelines.scout.sources.reddit import harvest_buy_intents, harvest_summary

router = APIRouter()
logger = logging.getLogger(__name__)


async def get_harvest_http() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(follow_redirects=True, timeout=settings.source_timeout_seconds) as http:
        yield http


@router.get("/debug")
async def key_status(keys: ApiKeys = Depends(get_api_keys)) -> dict[str, Any]:
    """Which provider keys resolved, without revealing them."""
    return {
        "llmProvider": settings.llm_provider,
        "hasLlmKey": bool(keys.llm_key(settings.llm_provider)),
        "hasTavilyKey": bool(keys.tavily_api_key),
        "missing": keys.missing(settings.llm_provider),
    }


@router.get("/debug/harvest")
async def debug_harvest(http: httpx.AsyncClient = Depends(get_harvest_http)) -> dict[str, Any]:
    """Run only the buyer-intent harvester and summarize what it found."""
    started = time.perf_counter()
    result = await harvest_buy_intents(http)
    elapsed_ms = int((time.perf_counter() - started) * 1000)
    logger.info(
        "debug.harvest.completed",
        extra={"intents": len(result.intents), "elapsed_ms": elapsed_ms},
    )
    return harvest_summary(result, elapsed_ms)
