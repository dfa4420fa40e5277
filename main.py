"""
Main FastAPI application entry point for Identity Reconciliation System
This file sets up the FastAPI application with configuration, middleware,
error mapping and the /api routes. It serves as the entry point for both
local development and AWS Lambda deployment.
"""

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
import logging
import traceback
from datetime import datetime, timezone

import errors
from schemas.identify import ContactListResponse, ErrorResponse, IdentifyRequest, IdentifyResponse
from services.identity_service import IdentityService, identity_service
from database import db_manager
from config import settings

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create FastAPI application instance
app = FastAPI(
    title=settings.API_TITLE,
    description=settings.API_DESCRIPTION,
    version=settings.API_VERSION,
    debug=settings.DEBUG
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

router = APIRouter(prefix=settings.API_PREFIX)


def get_identity_service() -> IdentityService:
    """Dependency returning the identity service; overridden in tests"""
    return identity_service


def _error_json(status_code: int, error: str, message: str, details=None) -> JSONResponse:
    error_response = ErrorResponse(error=error, message=message, details=details)
    return JSONResponse(status_code=status_code, content=error_response.model_dump(exclude_none=True))


# Exception handlers
@app.exception_handler(RequestValidationError)
@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc):
    """Handle request body validation errors"""
    logger.warning(f"Validation error for {request.url}: {exc}")

    error_details = []
    for error in exc.errors():
        error_details.append({
            "field": " -> ".join(str(x) for x in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        })

    return _error_json(400, "ValidationError", "Request validation failed", {"errors": error_details})


@app.exception_handler(errors.ValidationError)
async def contact_validation_handler(request: Request, exc: errors.ValidationError):
    logger.warning(f"Invalid contact data for {request.url}: {exc.message}")
    return _error_json(400, "ValidationError", exc.message, {"field": exc.field} if exc.field else None)


@app.exception_handler(errors.ConflictError)
async def conflict_handler(request: Request, exc: errors.ConflictError):
    logger.warning(f"Reconciliation conflict for {request.url}: {exc.message}")
    return _error_json(409, "ConflictError", "Contact is being updated by another request, please retry")


@app.exception_handler(errors.ReconciliationError)
async def reconciliation_error_handler(request: Request, exc: errors.ReconciliationError):
    """Store and data-integrity failures; details stay in the logs"""
    logger.error(f"{exc.error_type} for {request.url}: {exc.message}")
    return _error_json(500, "InternalServerError", "Unable to process request at this time")


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors"""
    logger.error(f"Unexpected error for {request.url}: {exc}")
    logger.error(f"Traceback: {traceback.format_exc()}")
    return _error_json(500, "InternalServerError", "An unexpected error occurred")


@app.get("/")
async def root():
    """Basic API information"""
    return {
        "message": "Identity Reconciliation API is running",
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancer health checks
    """
    db_connected = await db_manager.test_connection()

    return {
        "status": "healthy" if db_connected else "degraded",
        "environment": settings.ENVIRONMENT,
        "version": settings.API_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "lambda": settings.is_lambda_environment(),
        "database": {
            "status": "connected" if db_connected else "disconnected"
        }
    }


@router.post("/identify", response_model=IdentifyResponse)
async def identify_endpoint(
    request: IdentifyRequest,
    service: IdentityService = Depends(get_identity_service)
):
    """
    Main identity reconciliation endpoint

    Links customer identities based on email and/or phone number.
    Returns consolidated contact information including all linked emails,
    phone numbers, and secondary contact IDs.

    **Examples:**
    - New customer: Creates primary contact
    - Existing email + new phone: Creates secondary contact
    - Two existing primaries with shared info: Links them (older remains primary)
    """
    logger.info(f"Processing identify request: email={request.email}, phone={request.phoneNumber}")

    response = await service.identify_contact(request)

    logger.info(f"Successfully processed request. Primary contact ID: {response.contact.primaryContactId}")
    return response


@router.get(
    "/contacts",
    response_model=ContactListResponse,
    responses={404: {"model": ErrorResponse, "description": "No contacts stored"}}
)
async def list_contacts_endpoint(service: IdentityService = Depends(get_identity_service)):
    """
    List every non-deleted contact
    Answers 404 rather than an empty list when nothing is stored.
    """
    contacts = await service.list_contacts()
    if not contacts:
        return _error_json(404, "NotFound", "No contacts found")
    return ContactListResponse(contacts=contacts)


app.include_router(router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1
    )
