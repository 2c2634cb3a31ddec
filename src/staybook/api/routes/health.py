"""Health check."""

from fastapi import APIRouter, Depends

from staybook.api.dependencies import get_quote_cache
from staybook.api.schemas import camelize
from staybook.domain.quote_cache import QuoteCache

router = APIRouter(tags=["health"])


@router.get("/health")
def health(cache: QuoteCache = Depends(get_quote_cache)) -> dict:
    """Liveness plus quote cache counters."""
    return {"status": "ok", "quoteCache": camelize(cache.stats())}
