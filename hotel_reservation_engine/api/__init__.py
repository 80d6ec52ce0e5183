"""API endpoints for the Hotel Reservation Engine."""

from fastapi import APIRouter
from ..schemas.common import ErrorResponse
from .bookings import router as bookings_router
from .rooms import router as rooms_router
from .payments import router as payments_router

# Error bodies produced by ErrorHandlerMiddleware, for the OpenAPI schema
ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Illegal status transition"},
    404: {"model": ErrorResponse, "description": "Resource not found"},
    409: {"model": ErrorResponse, "description": "Room unavailable or concurrent modification"},
    422: {"model": ErrorResponse, "description": "Invalid input"},
    504: {"model": ErrorResponse, "description": "Operation exceeded its deadline"},
}

# Create main API router
api_router = APIRouter(prefix="/api/v1", responses=ERROR_RESPONSES)

# Include all routers
api_router.include_router(bookings_router)
api_router.include_router(rooms_router)
api_router.include_router(payments_router)

__all__ = ["api_router"]
