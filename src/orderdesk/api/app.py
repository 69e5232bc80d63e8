"""FastAPI application factory for the order desk."""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from orderdesk.api.routes import order_router
from orderdesk.domain import orderdesk


def create_app() -> FastAPI:
    """Build the API. The domain must already be initialized."""
    app = FastAPI(
        title="Order Desk API",
        description="Order fulfillment and refund workflow for the admin console",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def domain_context_middleware(request: Request, call_next):
        """Push the orderdesk domain context for each order request."""
        if request.url.path.startswith(order_router.prefix):
            with orderdesk.domain_context():
                response = await call_next(request)
            return response
        # No domain needed, pass through (health check, docs, etc.)
        return await call_next(request)

    app.include_router(order_router)

    @app.get("/health")
    async def health():
        return JSONResponse(content={"status": "ok", "domain": orderdesk.name})

    return app
