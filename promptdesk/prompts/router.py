"""Prompt library API routes."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query

from promptdesk.core.security import get_actor_id, require_actor, require_permission
from promptdesk.storage.models import PromptRecord, PromptVersionRecord

from .schemas import (
    CreatePromptRequest,
    PromptDetail,
    PromptList,
    PromptOut,
    PromptVersionOut,
    RatePromptRequest,
    RevertRequest,
    SortOrder,
    UpdatePromptRequest,
    VersionList,
)
from .service import get_prompt_service

router = APIRouter(prefix="/prompts", tags=["prompts"])


def _out(record: PromptRecord) -> PromptOut:
    return PromptOut(**asdict(record))


def _version_out(record: PromptVersionRecord) -> PromptVersionOut:
    return PromptVersionOut(**asdict(record))


@router.post("", response_model=PromptOut, status_code=201)
def create_prompt(
    request: CreatePromptRequest,
    actor_id: str = Depends(require_permission("prompts.create")),
) -> PromptOut:
    return _out(get_prompt_service().create_prompt(actor_id, request.model_dump()))


@router.get("", response_model=PromptList)
def list_prompts(
    role: str | None = None,
    department: str | None = None,
    workflow: str | None = None,
    prompt_type: str | None = None,
    status: str | None = None,
    visibility: str | None = None,
    author_id: str | None = None,
    search: str | None = None,
    page: int = Query(default=1),
    limit: int = Query(default=20),
    sort_by: str = Query(default="created_at"),
    sort_order: SortOrder = Query(default=SortOrder.DESC),
    actor_id: str | None = Depends(get_actor_id),
) -> PromptList:
    """List prompts visible to the actor (public or their own)."""
    filters = {
        "role": role,
        "department": department,
        "workflow": workflow,
        "prompt_type": prompt_type,
        "status": status,
        "visibility": visibility,
        "author_id": author_id,
        "search": search,
    }
    result = get_prompt_service().list_prompts(actor_id, filters, page, limit, sort_by, sort_order.value)
    return PromptList(data=[_out(p) for p in result["data"]], pagination=result["pagination"])


@router.get("/{prompt_id}", response_model=PromptDetail)
def get_prompt(prompt_id: str, actor_id: str | None = Depends(get_actor_id)) -> PromptDetail:
    result = get_prompt_service().get_prompt(actor_id, prompt_id)
    return PromptDetail(
        prompt=_out(result["prompt"]),
        versions=[_version_out(v) for v in result["versions"]],
    )


@router.patch("/{prompt_id}", response_model=PromptOut)
def update_prompt(
    prompt_id: str,
    request: UpdatePromptRequest,
    actor_id: str = Depends(require_actor),
) -> PromptOut:
    updates = request.model_dump(exclude_unset=True)
    return _out(get_prompt_service().update_prompt(actor_id, prompt_id, updates))


@router.delete("/{prompt_id}", response_model=PromptOut)
def delete_prompt(prompt_id: str, actor_id: str = Depends(require_actor)) -> PromptOut:
    """Archive the prompt. Archived prompts drop out of listings and search."""
    return _out(get_prompt_service().delete_prompt(actor_id, prompt_id))


@router.get("/{prompt_id}/versions", response_model=VersionList)
def get_versions(
    prompt_id: str,
    page: int = Query(default=1),
    limit: int = Query(default=20),
    actor_id: str | None = Depends(get_actor_id),
) -> VersionList:
    result = get_prompt_service().get_versions(actor_id, prompt_id, page, limit)
    return VersionList(data=[_version_out(v) for v in result["data"]], pagination=result["pagination"])


@router.post("/{prompt_id}/revert", response_model=PromptOut)
def revert_prompt(
    prompt_id: str,
    request: RevertRequest,
    actor_id: str = Depends(require_actor),
) -> PromptOut:
    return _out(get_prompt_service().revert_prompt(actor_id, prompt_id, request.version_id, request.reason))


@router.post("/{prompt_id}/use", response_model=PromptOut)
def use_prompt(prompt_id: str, actor_id: str | None = Depends(get_actor_id)) -> PromptOut:
    return _out(get_prompt_service().record_use(actor_id, prompt_id))


@router.post("/{prompt_id}/rate", response_model=PromptOut)
def rate_prompt(
    prompt_id: str,
    request: RatePromptRequest,
    actor_id: str | None = Depends(get_actor_id),
) -> PromptOut:
    return _out(get_prompt_service().rate_prompt(actor_id, prompt_id, request.rating))
