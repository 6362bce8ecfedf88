"""uvicorn entry point for the ops console API.

    cd apps/api && uvicorn main:app --reload

Settings are read from the environment (and .env) when the app is created.
Set USE_FAKE_BACKENDS=true to run locally without Azure.
"""

from opsconsole.app import add_request_id_middleware, create_app

app = create_app()
add_request_id_middleware(app)

__all__ = ["app"]
