"""Daily token budget status and limit updates."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from airbitrage.services.budget.ledger import BudgetLedger, get_budget_ledger

router = APIRouter()
logger = logging.getLogger(__name__)


class BudgetUpdateRequest(BaseModel):
    """Partial update; omitted limits keep their stored values."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    daily_token_limit: int | None = Field(default=None, ge=0)
    per_run_token_limit: int | None = Field(default=None, ge=0)
    per_run_tool_call_limit: int | None = Field(default=None, ge=0)


@router.get("/budget")
async def get_budget(ledger: BudgetLedger = Depends(get_budget_ledger)) -> dict[str, Any]:
    return ledger.summary()


@router.put("/budget")
async def update_budget(
    payload: BudgetUpdateRequest,
    ledger: BudgetLedger = Depends(get_budget_ledger),
) -> dict[str, Any]:
    changes = payload.model_dump(by_alias=True, exclude_none=True)
    config = ledger.update_config(changes)
    logger.info("budget.api.updated", extra={"fields": sorted(changes)})
    return {"success": True, "config": config.to_payload()}
