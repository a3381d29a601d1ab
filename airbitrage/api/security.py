from __future__ import annotations

import hmac
import logging

from fastapi import Header, HTTPException, Query

from airbitrage.config import settings

logger = logging.getLogger(__name__)


def require_site_password(
    p: str | None = Query(default=None, description="Shared site password."),
    x_site_password: str | None = Header(default=None),
) -> None:
    """Gate a route behind ``SITE_PASSWORD`` when one is configured."""
    expected = settings.site_password
    if not expected:
        return
    supplied = p or x_site_password or ""
    if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("auth.site_password.rejected")
        raise HTTPException(status_code=401, detail="Unauthorized")
