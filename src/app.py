"""Order desk FastAPI application.

Serves the admin-facing order workflow over HTTP. Commands and workflow
operations are processed synchronously within each request.

Usage:
    uvicorn app:app --app-dir src --host 0.0.0.0 --port 8000 --reload
"""

# The domain is initialized at module level so uvicorn workers share it.
# PROTEAN_ENV selects the config overlay from src/orderdesk/domain.toml.
from orderdesk.api.app import create_app
from orderdesk.domain import orderdesk

orderdesk.init()

app = create_app()
