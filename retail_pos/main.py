from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

# Import database components
from retail_pos.database.database import engine, Base

# Import middleware
from retail_pos.common.middleware import RequestContextMiddleware

# Import routers
from retail_pos.modules.inventory.router import movements_router
from retail_pos.modules.tills.router import tills_router
from retail_pos.modules.sales.router import sales_router, current_accounts_router

# Import models for table creation
import retail_pos.modules.catalog.models
import retail_pos.modules.inventory.models
import retail_pos.modules.tills.models
import retail_pos.modules.sales.models

from retail_pos.core.config import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.ENVIRONMENT == "production" else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="Retail POS Engine",
    description="Sales, credit notes, till sessions and close-out reconciliation for a retail back office",
    version="1.0.0",
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None
)

app.add_middleware(RequestContextMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(sales_router, prefix="/api/v1")
app.include_router(current_accounts_router, prefix="/api/v1")
app.include_router(tills_router, prefix="/api/v1")
app.include_router(movements_router, prefix="/api/v1")


@app.get("/")
async def read_root():
    return {
        "message": "Retail POS Engine is running",
        "version": "1.0.0",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy", "environment": settings.ENVIRONMENT}


@app.on_event("startup")
async def startup_event():
    logger.info("Retail POS Engine starting up...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug mode: {settings.DEBUG}")
    logger.info(f"Till lock scope: {settings.TILL_LOCK_SCOPE}")

    # Create database tables (only for development - use migrations in production)
    if settings.ENVIRONMENT == "development":
        Base.metadata.create_all(bind=engine)


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Retail POS Engine shutting down...")
