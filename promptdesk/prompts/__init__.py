"""Prompt library domain - CRUD, validation and version history."""

from .router import router
from .service import PromptService, get_prompt_service, reset_prompt_service
from .validators import (
    PROMPT_STATUSES,
    PROMPT_TYPES,
    SORT_FIELDS,
    VISIBILITIES,
    PromptValidator,
)
from .schemas import (
    CreatePromptRequest,
    UpdatePromptRequest,
    PromptOut,
    PromptVersionOut,
    PromptList,
)

__all__ = [
    "router",
    "PromptService",
    "get_prompt_service",
    "reset_prompt_service",
    "PromptValidator",
    "PROMPT_TYPES",
    "PROMPT_STATUSES",
    "VISIBILITIES",
    "SORT_FIELDS",
    "CreatePromptRequest",
    "UpdatePromptRequest",
    "PromptOut",
    "PromptVersionOut",
    "PromptList",
]
