"""Thin API launcher.

This is the uvicorn entrypoint. All application logic lives in the parley package.
Run with: uvicorn main:app --reload

The app instance is created here (not in parley.app) so tests can import
create_app without any environment variables set.
"""

from parley.app import add_request_id_middleware, create_app

app = create_app()
# Add request-id middleware LAST so it runs FIRST (outermost)
add_request_id_middleware(app)

__all__ = ["app"]
