"""
ResearchOps API v1 Routers

All journal endpoints under /api/v1/*
"""

from researchops.api.v1 import health, journals, admin

__all__ = ["health", "journals", "admin"]
