# Backend/app/main.py
from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, HTTPException, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response as StarletteResponse

from api.routers.feeds import router as feeds_router
from app.core.logging import configure_logging, logger
from app.core.request_id import REQUEST_ID_HEADER, begin_request, end_request, get_request_id
from app.deps.feed_services import FeedServices, build_feed_services
from services.db_service import close_pool
from services.news_source_service import ensure_default_sources


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        token = begin_request(request.headers.get(REQUEST_ID_HEADER))
        request_id = get_request_id()
        logger.info("request_started", method=request.method, path=str(request.url.path))
        try:
            response: StarletteResponse = await call_next(request)
        except Exception as exc:
            logger.error("request_exception", error=type(exc).__name__)
            raise
        else:
            logger.info("request_ended", status_code=response.status_code)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            end_request(token)


def create_app(services: Optional[FeedServices] = None) -> FastAPI:
    configure_logging(service_name="api")

    app = FastAPI(
        title="Liberty Lens - Feed Aggregation",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.feed_services = services or build_feed_services()

    @app.on_event("startup")
    async def _startup() -> None:
        feed_services: FeedServices = app.state.feed_services
        if feed_services.uses_database:
            await feed_services.ensure_schema()
        await ensure_default_sources(feed_services.registry)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        feed_services: FeedServices = app.state.feed_services
        await feed_services.aclose()
        if feed_services.uses_database:
            await close_pool()

    app.add_middleware(RequestIdMiddleware)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_exception", exc_info=True)
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})

    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.head("/health")
    async def health_head():
        return Response(status_code=200)

    app.include_router(feeds_router)
    return app


app = create_app()
