"""
Main FastAPI application entry point.
Configures the application, middleware, and includes routers.
"""
from dotenv import load_dotenv

# Load environment variables from .env file first
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
from .directory.router import router as directory_router
from .challenges.router import router as otp_router
from .attestation.router import router as attestation_router
from .database import engine, SessionLocal, Base
from .config import settings
from .runtime import Runtime
from .exceptions import register_exception_handlers
from .core.middleware import setup_middlewares
# Import all models here for creating tables
from .core import audit_models  # noqa: F401
from .directory import models as directory_models  # noqa: F401
from .challenges import models as challenge_models  # noqa: F401
from .attestation import models as attestation_models  # noqa: F401

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Create database tables if they don't exist
Base.metadata.create_all(bind=engine)

logger.info("Starting Physician Attestation API...")

# Create FastAPI application
app = FastAPI(
    title="Physician Attestation API",
    description="Physician attestation for medical authorization requests",
    version="1.0.0"
)

# Shared collaborators (directory, OTP issuer/validator, companion backend, open sessions)
app.state.runtime = Runtime(SessionLocal, settings)

# Register exception handlers
register_exception_handlers(app)

# Configure CORS middleware
origins = [
    settings.frontend_url,
    "http://localhost:3000",  # Frontend development server
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Setup custom middleware
setup_middlewares(app)

# Include routers
app.include_router(directory_router, prefix="/api/v1/physician-directory", tags=["Physician Directory"])
app.include_router(otp_router, prefix="/api/v1/otp", tags=["One-Time Codes"])
app.include_router(attestation_router, prefix="/api/v1/attestations", tags=["Attestations"])

# Root endpoint
@app.get("/")
def root():
    """
    Root endpoint for API health check.

    Returns:
        dict: Simple welcome message
    """
    return {"message": "Welcome to the Physician Attestation API"}

# Health check endpoint
@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring.

    Returns:
        dict: Health status information
    """
    return {"status": "healthy", "database": "connected"}
