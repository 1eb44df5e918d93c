"""
API Router - all endpoints.
"""
from fastapi import APIRouter
from app.router.api.v1 import chat

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(
    chat.router,
    prefix="/chat",
    tags=["Chat"],
)
