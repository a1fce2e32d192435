from fastapi import APIRouter

from intervuo.api.endpoints.interview import interview_router

api_router = APIRouter()

api_router.include_router(interview_router, tags=["interview"])
