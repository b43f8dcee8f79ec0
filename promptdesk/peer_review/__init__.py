"""Peer review domain - submissions, reviewer matching, reviews and comment threads."""

from .router import router
from .service import PeerReviewService, get_peer_review_service, reset_peer_review_service, reviewer_score

__all__ = [
    "router",
    "PeerReviewService",
    "get_peer_review_service",
    "reset_peer_review_service",
    "reviewer_score",
]
