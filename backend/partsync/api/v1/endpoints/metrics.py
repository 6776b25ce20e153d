"""
Prometheus metrics endpoint.

Exposes request, sync job, sync item, distributor call and storefront
write metrics in the Prometheus text format.
"""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter()


@router.get("")
async def get_metrics():
    """Prometheus metrics endpoint for scraping."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
