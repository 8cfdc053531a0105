from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import logging
import time

from doctrust.config.azure_config import AzureStorageService
from doctrust.controllers.document_trust import DocumentTrustController
from doctrust.core.config import settings
from doctrust.core.errors import DocTrustError, ErrorKind
from doctrust.db.metadata_store import MongoMetadataStore
from doctrust.db.mongodb import close_database, get_database
from doctrust.routes.document_routes import router as document_router
from doctrust.routes.link_routes import router as link_router
from doctrust.routes.signature_routes import router as signature_router
from doctrust.services.rate_limiter import create_rate_limiter

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Connect the stores, build the controller and release everything on shutdown
    """
    db = await get_database()
    store = MongoMetadataStore(db)
    await store.ensure_indexes()

    blob_stores = [
        AzureStorageService(settings.AZURE_CONTAINER_DOCUMENTS),
        AzureStorageService(settings.AZURE_CONTAINER_CERTIFICATES),
        AzureStorageService(settings.AZURE_CONTAINER_SIGNATURES),
        AzureStorageService(settings.AZURE_CONTAINER_SIGNED_COPIES),
    ]
    documents, certificates, signatures, signed_copies = blob_stores

    app.state.controller = DocumentTrustController(
        store, documents, certificates, signatures, signed_copies, create_rate_limiter()
    )
    logger.info(f"{settings.APP_NAME} started")

    try:
        yield
    finally:
        for blob_store in blob_stores:
            await blob_store.close()
        await close_database()
        logger.info(f"{settings.APP_NAME} stopped")

def create_app(use_lifespan: bool = True) -> FastAPI:
    app = FastAPI(
        title=f"{settings.APP_NAME} API",
        description="Document access links, integrity certificates and signed copies",
        version=settings.APP_VERSION,
        openapi_url="/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan if use_lifespan else None,
    )

    # Configure CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # For development - restrict in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request timing middleware
    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        start_time = time.time()
        try:
            response = await call_next(request)
            process_time = time.time() - start_time
            response.headers["X-Process-Time"] = str(process_time)
            return response
        except Exception as e:
            logger.error(f"Request failed: {str(e)}")
            return JSONResponse(
                status_code=500,
                content=DocTrustError(ErrorKind.INTERNAL, "Internal server error").to_response(),
            )

    @app.exception_handler(DocTrustError)
    async def doctrust_error_handler(request: Request, exc: DocTrustError):
        headers = {}
        if exc.retry_after_seconds is not None:
            headers["Retry-After"] = str(exc.retry_after_seconds)
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.kind.value}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_response(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        error = DocTrustError(ErrorKind.VALIDATION, message)
        return JSONResponse(status_code=error.status_code, content=error.to_response())

    # Include routers
    app.include_router(document_router, prefix=settings.API_PREFIX)
    app.include_router(link_router, prefix=settings.API_PREFIX)
    app.include_router(signature_router, prefix=settings.API_PREFIX)

    @app.get("/")
    async def root():
        """API root endpoint"""
        return {"message": f"Welcome to the {settings.APP_NAME} API", "version": settings.APP_VERSION}

    return app

app = create_app()
