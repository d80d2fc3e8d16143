import base64
import logging
from typing import Optional
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, UploadFile, File, Form
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request
from pydantic import BaseModel

from app.clients import (
    GLOBAL_TIMEOUT_MS,
    LOG_LEVEL,
    MODEL,
    RESEARCH_TIMEOUT_MS,
    RETRY_ATTEMPTS,
    VISION_MODEL,
)
from app.database import history_enabled, init_db
from app.image_handler import ImageValidationError, validate_image
from app.insights_service import daily_insight
from app.scan_service import ScanInputError, ScanTimeoutError, build_scan_envelope, handle_scan
from app.search_client import search_enabled
from eatwise.models import DailyInsight, ScanRequest

load_dotenv()

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize database on startup
try:
    init_db()
except Exception as e:
    logger.error(f"[DB] init failed, history unavailable: {e}")

app = FastAPI(title="EatWise Scan API")

origins = [
    "http://localhost:5173",  # Vite dev
    "http://localhost:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

TIMEOUT_MESSAGE = "This scan took longer than expected. Please try again in a moment."
INTERNAL_MESSAGE = "Something went wrong while analyzing this product. Please try again."


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Invalid request payload",
                "details": exc.errors(),
            }
        },
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    code_map = {
        400: "BAD_REQUEST",
        404: "NOT_FOUND",
        408: "TIMEOUT",
    }
    error_code = code_map.get(exc.status_code, "HTTP_ERROR")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": error_code,
                "message": exc.detail,
            }
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"[API] Unhandled error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": INTERNAL_MESSAGE,
            }
        },
    )


class HealthResponse(BaseModel):
    ok: bool


class TimeoutsConfig(BaseModel):
    global_ms: int
    research_ms: int


class FeaturesConfig(BaseModel):
    grounded_research: bool
    history: bool


class ConfigResponse(BaseModel):
    model: str
    vision_model: str
    retry_attempts: int
    timeouts: TimeoutsConfig
    features: FeaturesConfig


class InsightResponse(BaseModel):
    insight: DailyInsight


@app.get("/health", response_model=HealthResponse)
@app.get("/api/v1/health", response_model=HealthResponse)
def health():
    return {"ok": True}


@app.get("/config", response_model=ConfigResponse)
@app.get("/api/v1/config", response_model=ConfigResponse)
def get_config():
    return {
        "model": MODEL,
        "vision_model": VISION_MODEL,
        "retry_attempts": RETRY_ATTEMPTS,
        "timeouts": {
            "global_ms": GLOBAL_TIMEOUT_MS,
            "research_ms": RESEARCH_TIMEOUT_MS,
        },
        "features": {
            "grounded_research": search_enabled(),
            "history": history_enabled(),
        },
    }


async def _run_scan(scan_request: ScanRequest) -> dict:
    try:
        outcome = await handle_scan(scan_request)
    except (ScanInputError, ImageValidationError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ScanTimeoutError:
        raise HTTPException(status_code=408, detail=TIMEOUT_MESSAGE)
    return build_scan_envelope(outcome)


@app.post("/scan")
@app.post("/api/v1/scan")
async def scan(request: ScanRequest):
    """
    Scan a product by image (base64, data URL or URL) and/or barcode.
    """
    return await _run_scan(request)


@app.post("/scan/image")
@app.post("/api/v1/scan/image")
async def scan_image(
    image: UploadFile = File(...),
    barcode: Optional[str] = Form(None),
    scanLocation: Optional[str] = Form(None),
    sessionId: Optional[str] = Form(None),
):
    """
    Scan a product from a multipart image upload.
    """
    content = await image.read()
    try:
        mime_type = validate_image(content)
    except ImageValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    encoded = base64.b64encode(content).decode("utf-8")
    scan_request = ScanRequest(
        image=f"data:{mime_type};base64,{encoded}",
        barcode=barcode,
        scanLocation=scanLocation,
        sessionId=sessionId,
    )
    return await _run_scan(scan_request)


@app.get("/insights/{session_id}", response_model=InsightResponse)
@app.get("/api/v1/insights/{session_id}", response_model=InsightResponse)
def get_insights(session_id: str):
    """
    Today's most frequent ingredient for a session, with a suggestion.
    """
    return {"insight": daily_insight(session_id)}
