"""Current user endpoint."""

from typing import Annotated

from fastapi import APIRouter, Depends

from parley.auth.middleware import Viewer, get_viewer
from parley.responses import success_response

router = APIRouter()


@router.get("/me")
async def get_me(viewer: Annotated[Viewer, Depends(get_viewer)]) -> dict:
    """Return the authenticated identity.

    Returns:
        Success envelope with user_id and email.
    """
    return success_response({"user_id": viewer.user_id, "email": viewer.email})
