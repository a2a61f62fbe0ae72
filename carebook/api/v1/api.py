from fastapi import APIRouter

from carebook.api.v1.endpoints import appointments, booking, schedule

api_router = APIRouter()

# Patient booking wizard
api_router.include_router(booking.router, prefix="/booking", tags=["booking"])

# Provider appointment management
api_router.include_router(
    appointments.router, prefix="/provider", tags=["provider appointments"]
)

# Provider operating hours and availability
api_router.include_router(schedule.router, prefix="/provider", tags=["schedule"])
