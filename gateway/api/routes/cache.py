from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from gateway.api.dependencies import get_gateway
from gateway.application.services.gateway import Gateway
from gateway.domain.errors import CacheStoreError

router = APIRouter(prefix="/cache", tags=["cache"])


class InvalidateRequest(BaseModel):
    pattern: str | None = Field(default=None, examples=["content_generation:gpt-4o"])
    namespace: str | None = Field(default=None, examples=["openai"])


@router.get("/stats")
async def cache_stats(gateway: Gateway = Depends(get_gateway)) -> dict[str, Any]:
    return gateway.get_statistics().as_dict()


@router.post("/stats/reset")
async def reset_cache_stats(gateway: Gateway = Depends(get_gateway)) -> dict[str, Any]:
    gateway.reset_statistics()
    return gateway.get_statistics().as_dict()


@router.post("/invalidate")
async def invalidate_cache(
    body: InvalidateRequest,
    gateway: Gateway = Depends(get_gateway),
) -> dict[str, Any]:
    """Delete cached responses by key prefix, namespace, or both."""
    try:
        deleted = await gateway.invalidate(pattern=body.pattern, namespace=body.namespace)
    except CacheStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"deleted": deleted, "pattern": body.pattern, "namespace": body.namespace}
