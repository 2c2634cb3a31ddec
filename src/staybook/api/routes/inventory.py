"""Inventory matrix endpoint."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query

from staybook.api.context import RequestContext, get_request_context
from staybook.api.schemas import camelize
from staybook.domain.availability import DEFAULT_MATRIX_DAYS, MAX_MATRIX_DAYS, get_availability_matrix

router = APIRouter(prefix="/inventory", tags=["inventory"])


# ── GET /inventory/matrix ─────────────────────────────────


@router.get("/matrix")
def matrix(
    start_date: date = Query(alias="startDate"),
    days: int = Query(default=DEFAULT_MATRIX_DAYS, ge=1, le=MAX_MATRIX_DAYS),
    ctx: RequestContext = Depends(get_request_context),
) -> dict:
    """Per date and room type total/booked/available with a daily summary."""
    return camelize(get_availability_matrix(ctx.property_id, start_date, days))
