"""API Routes module"""
from fastapi import APIRouter

from .definitions import router as definitions_router
from .instances import router as instances_router
from .approvals import router as approvals_router
from .delegations import router as delegations_router

# Main API router
api_router = APIRouter()

# Include all route modules
api_router.include_router(definitions_router, prefix="/definitions", tags=["Definitions"])
api_router.include_router(instances_router, prefix="/instances", tags=["Instances"])
api_router.include_router(approvals_router, prefix="/approvals", tags=["Approvals"])
api_router.include_router(delegations_router, prefix="/delegations", tags=["Delegations"])

__all__ = ["api_router"]
