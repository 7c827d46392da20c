"""Health check endpoint."""

from fastapi import APIRouter

from parley.responses import success_response

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Liveness check. Does not touch the database or any vendor."""
    return success_response({"status": "ok"})
