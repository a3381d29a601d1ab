"""Extract structured opportunities from model text.

Missing or malformed output never raises: it degrades to an empty list.
"""

from __future__ import annotations

import json
import logging
import re

from airbitrage.models.opportunity import ParsedOpportunity, coerce_opportunity

logger = logging.getLogger(__name__)

_TAGGED_BLOCK = re.compile(r"<opportunities>\s*([\s\S]*?)\s*</opportunities>")
_JSON_FENCE = re.compile(r"```(?:json)?\s*(\[[\s\S]*?\])\s*```")


def _opportunity_block(text: str) -> str | None:
    match = _TAGGED_BLOCK.search(text) or _JSON_FENCE.search(text)
    return match.group(1) if match else None


def parse_opportunities(text: str) -> list[ParsedOpportunity]:
    block = _opportunity_block(text or "")
    if block is None:
        logger.info("snipe.parse.no_block")
        return []
    try:
        candidates = json.loads(block)
    except ValueError:
        logger.warning("snipe.parse.invalid_json", extra={"length": len(block)})
        return []
    if not isinstance(candidates, list):
        logger.warning("snipe.parse.not_a_list")
        return []

    opportunities: list[ParsedOpportunity] = []
    for candidate in candidates:
        opportunity = coerce_opportunity(candidate)
        if opportunity is None:
            logger.info("snipe.parse.dropped_candidate")
            continue
        if opportunity.arithmetic_gap:
            # Reported as-is; the model's profit figure is part of its contract.
            logger.warning(
                "snipe.parse.profit_mismatch",
                extra={"title": opportunity.title, "gap_cents": opportunity.arithmetic_gap},
            )
        opportunities.append(opportunity)
    return opportunities


def extract_reasoning(text: str) -> str:
    """Model prose with the opportunity block removed."""
    stripped = _TAGGED_BLOCK.sub("", text or "")
    stripped = _JSON_FENCE.sub("", stripped)
    return stripped.strip()
