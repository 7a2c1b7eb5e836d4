"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import campaigns, users, policies, recalculation

api_router = APIRouter()

api_router.include_router(
    users.router,
    prefix="/users",
    tags=["users"]
)

api_router.include_router(
    campaigns.router,
    prefix="/campaigns",
    tags=["campaigns"]
)

api_router.include_router(
    policies.router,
    prefix="/policies",
    tags=["policies"]
)

api_router.include_router(
    recalculation.router,
    prefix="/recalculation",
    tags=["recalculation"]
)
