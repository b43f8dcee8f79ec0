"""PromptDesk - prompt library, peer review, approval workflow and governance service.

Domains are independent packages (prompts, search, peer_review, approvals,
audit, rbac, governance, analytics, reports) sharing the storage layer.
The HTTP application is built by ``promptdesk.main.create_app``.
"""

__version__ = "0.1.0"
