# app/main.py

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.utils.logger import setup_app_logging, get_logger
# Local application imports - Routes
from app.agreements.router import router as agreement_routes, template_router as agreement_template_routes
from app.audit_trail.router import router as audit_trail_routes
from app.drivers.router import router as driver_routes

APP_NAME = "Fleet Agreements Service"

# Create the FastAPI app
fleet_app = FastAPI(
    title=f"Fleet Agreements - {settings.environment}",
    description="Vehicle handover agreements, driver e-signing and audit trail",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Configure logging
if settings.environment.lower() != "production":
    setup_app_logging(
        fleet_app,
        log_level="INFO",
        use_json=False,
        app_name=APP_NAME,
        environment=settings.environment,
    )
else:
    setup_app_logging(
        fleet_app,
        log_level="INFO",
        use_json=True,
        log_file="/var/log/fleet_agreements.log",
        app_name=APP_NAME,
        environment="production",
    )
logger = get_logger(__name__)

# Add CORS middleware
fleet_app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_cors_urls.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers; templates first so /agreements/templates is not read as an agreement id
fleet_app.include_router(agreement_template_routes)
fleet_app.include_router(agreement_routes)
fleet_app.include_router(driver_routes)
fleet_app.include_router(audit_trail_routes)


# Root API to check if the server is up
@fleet_app.get("/", tags=["Base"])
async def health_check():
    """
    Root API to check if the server is up
    """
    return {"status": "ok"}
