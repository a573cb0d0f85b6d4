from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import lru_cache

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse, PlainTextResponse
from sqlalchemy.orm import Session

from app.blob_store import BlobStore
from app.config import settings
from app.db import get_session, init_db
from app.errors import UploadError
from app.repository import DigitalProductsRepository, ShopInstallationsRepository
from app.schemas import ErrorResponse, UploadResponse
from app.shopify_api import ShopifyApiClient
from app.uploader import DigitalProductUploader

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_blob_store() -> BlobStore:
    return BlobStore()


@lru_cache(maxsize=1)
def get_shopify_api() -> ShopifyApiClient:
    return ShopifyApiClient()


@asynccontextmanager
async def _app_lifespan(_app: FastAPI) -> AsyncIterator[None]:
    init_db()
    yield


def create_app() -> FastAPI:
    app = FastAPI(
        title="Digital Product Uploader",
        default_response_class=ORJSONResponse,
        lifespan=_app_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=sorted(set(settings.BACKEND_CORS_ORIGINS)),
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.exception_handler(UploadError)
    async def upload_error_handler(_request: Request, exc: UploadError) -> ORJSONResponse:
        if exc.status_code >= 500:
            logger.error("Upload request failed", exc_info=exc)
        return ORJSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=str(exc)).model_dump(),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("Unhandled server exception", exc_info=exc)
        return ORJSONResponse(
            status_code=500,
            content=ErrorResponse(error="Internal server error").model_dump(),
        )

    @app.get("/", response_class=PlainTextResponse)
    def root() -> str:
        return "Digital Product Uploader API is running."

    @app.get("/health")
    def health() -> dict[str, bool]:
        return {"ok": True}

    @app.post("/api/upload", response_model=UploadResponse)
    async def upload_digital_product(
        request: Request,
        session: Session = Depends(get_session),
        blob_store: BlobStore = Depends(get_blob_store),
        shopify_api: ShopifyApiClient = Depends(get_shopify_api),
    ) -> UploadResponse:
        uploader = DigitalProductUploader(
            products=DigitalProductsRepository(session),
            installations=ShopInstallationsRepository(session),
            blob_store=blob_store,
            shopify_api=shopify_api,
        )
        outcome = await uploader.process(request)
        return UploadResponse(message=outcome.message, status=True)

    return app


app = create_app()
