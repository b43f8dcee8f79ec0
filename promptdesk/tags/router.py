"""Tag API routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Response

from promptdesk.core.security import require_actor, require_permission

from .schemas import AssignTagRequest, CreateTagRequest, TagOut, TrendingTagOut
from .service import get_tag_service

router = APIRouter(prefix="/tags", tags=["tags"])

can_tag = require_permission("prompts.update")


# =============================================================================
# Registry
# =============================================================================


@router.get("", response_model=list[TagOut])
def list_tags(
    tag_type: str | None = None,
    system_only: bool = False,
    limit: int = Query(default=100, ge=1, le=500),
    _: str = Depends(require_actor),
) -> list[dict[str, Any]]:
    return get_tag_service().list_tags(tag_type, system_only, limit)


@router.post("", response_model=TagOut, status_code=201)
def create_tag(request: CreateTagRequest, actor_id: str = Depends(require_permission("prompts.create"))) -> dict[str, Any]:
    return get_tag_service().create_tag(
        actor_id, request.name, request.description, request.tag_type.value, request.color
    )


@router.get("/search", response_model=list[TagOut])
def search_tags(
    q: str = Query(..., min_length=1),
    limit: int = Query(default=10, ge=1, le=100),
    _: str = Depends(require_actor),
) -> list[dict[str, Any]]:
    return get_tag_service().search_tags(q, limit)


@router.get("/trending", response_model=list[TrendingTagOut])
def get_trending_tags(
    limit: int = Query(default=10, ge=1, le=100),
    days: int = Query(default=7, ge=1, le=365),
    _: str = Depends(require_actor),
) -> list[dict[str, Any]]:
    """Tags most assigned in the last ``days``, with their trend direction."""
    return get_tag_service().get_trending_tags(limit, days)


@router.get("/{tag_id}", response_model=TagOut)
def get_tag(tag_id: str, _: str = Depends(require_actor)) -> dict[str, Any]:
    return get_tag_service().get_tag(tag_id)


# =============================================================================
# Prompt Assignments
# =============================================================================


@router.get("/prompts/{prompt_id}", response_model=list[TagOut])
def get_prompt_tags(prompt_id: str, _: str = Depends(require_actor)) -> list[dict[str, Any]]:
    return get_tag_service().get_prompt_tags(prompt_id)


@router.post("/prompts/{prompt_id}", status_code=201)
def assign_tag(prompt_id: str, request: AssignTagRequest, actor_id: str = Depends(can_tag)) -> dict[str, Any]:
    return get_tag_service().assign_tag(prompt_id, request.tag_id, actor_id, request.source.value)


@router.delete("/prompts/{prompt_id}/{tag_id}", status_code=204)
def remove_tag(prompt_id: str, tag_id: str, _: str = Depends(can_tag)) -> Response:
    get_tag_service().remove_tag(prompt_id, tag_id)
    return Response(status_code=204)
