"""Tags domain - tag registry, prompt tagging and trending tags."""

from .router import router
from .service import TagService, get_tag_service, reset_tag_service, slugify

__all__ = [
    "router",
    "TagService",
    "get_tag_service",
    "reset_tag_service",
    "slugify",
]
