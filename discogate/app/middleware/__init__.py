"""Middleware package for the gateway."""

from discogate.app.middleware.auth import require_user
from discogate.app.middleware.rate_limit import UpstreamBudget, get_upstream_budget
from discogate.app.middleware.request_id import RequestIdMiddleware, get_request_id

__all__ = [
    "require_user",
    "UpstreamBudget",
    "get_upstream_budget",
    "RequestIdMiddleware",
    "get_request_id",
]
