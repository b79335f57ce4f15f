from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pymongo.errors import ConnectionFailure, PyMongoError
from config.database import Database
from config.settings import settings
from services.exceptions import BookingError, TransientStoreError
from routes import (
    barber_routes,
    service_routes,
    appointment_routes,
    dashboard_routes
)
import uvicorn
import logging

logger = logging.getLogger(__name__)

app = FastAPI(title="Barber Booking API")

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include all routers
app.include_router(barber_routes.router, prefix="/api/barbers")
app.include_router(service_routes.router, prefix="/api/services")
app.include_router(appointment_routes.router, prefix="/api/appointments")
app.include_router(dashboard_routes.router, prefix="/api/dashboard")


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(PyMongoError)
async def store_error_handler(request: Request, exc: PyMongoError):
    if isinstance(exc, ConnectionFailure):
        logger.error(f"Store unavailable during {request.url.path}: {str(exc)}")
        error = TransientStoreError()
    else:
        logger.error(f"Store error during {request.url.path}: {str(exc)}", exc_info=True)
        error = TransientStoreError("The booking store rejected the request")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.on_event("startup")
async def startup_db_client():
    try:
        await Database.connect_db()
    except Exception as e:
        logger.error(f"Error during startup: {str(e)}")
        raise


@app.on_event("shutdown")
async def shutdown_db_client():
    try:
        await Database.close_db()
    except Exception as e:
        logger.error(f"Error during shutdown: {str(e)}")


@app.get("/")
def read_root():
    return {"message": "Welcome to the Barber Booking API"}


@app.get("/health")
async def health():
    return {"status": "ok", "database": Database.db is not None}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
