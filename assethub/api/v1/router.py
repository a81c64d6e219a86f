"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from assethub.api.v1 import uploads, usage

api_router = APIRouter()

api_router.include_router(uploads.router, prefix="/uploads", tags=["uploads"])
api_router.include_router(usage.router, prefix="/usage", tags=["usage"])
