from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import uuid
from contextlib import asynccontextmanager
from database import database
from routes import subscription, billing, onboarding

import os
import logging
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting ProspectFlow API")
    if os.environ.get("PYTEST_RUNNING"):
        logger.info("PYTEST_RUNNING set; skipping database connection")
        yield
        return

    await database.connect()

    # Razorpay config: log mode from key prefix (never the secret)
    key_id = (os.environ.get("RAZORPAY_KEY_ID") or "").strip()
    if not key_id or not (os.environ.get("RAZORPAY_KEY_SECRET") or "").strip():
        logger.error("RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET is not set. Premium checkout will fail.")
    else:
        logger.info("RAZORPAY_MODE = %s (from key prefix)", "test" if key_id.startswith("rzp_test_") else "live")

    yield

    # Shutdown
    logger.info("Shutting down ProspectFlow API")
    await database.close()

# Create FastAPI app
app = FastAPI(
    title="ProspectFlow API",
    description="Job-search CRM - subscriptions, billing and onboarding",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(subscription.router)
app.include_router(billing.router)
app.include_router(onboarding.router)

# Root endpoint
@app.get("/api")
async def root():
    return {
        "service": "ProspectFlow",
        "version": "1.0.0",
        "status": "operational"
    }

# Health check
@app.get("/api/health")
async def health_check():
    db_status = "unavailable"
    db = database.get_db()
    if db is not None:
        try:
            await db.command("ping")
            db_status = "connected"
        except Exception as e:
            logger.warning(f"Health check database ping failed: {e}")
            db_status = "error"

    return {
        "status": "healthy",
        "database": db_status,
        "environment": os.getenv("ENVIRONMENT", "development")
    }

# Validation error handler: log request_id + errors (loc path) for debugging bad payloads
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = str(uuid.uuid4())
    errors = exc.errors()
    logger.warning(
        "Validation failed request_id=%s path=%s errors=%s",
        request_id,
        request.url.path,
        [(e.get("loc"), e.get("msg"), e.get("type")) for e in errors],
    )
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_errors(errors), "request_id": request_id},
    )


def jsonable_errors(errors):
    """Pydantic error ctx may hold exception objects; keep only JSON-safe fields."""
    return [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
        for e in errors
    ]


# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", 8001)))
