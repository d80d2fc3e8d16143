"""
Scan pipeline coordinator.

    EXTRACTING → INFERRING_INTENT → RESEARCHING → SYNTHESIZING_UI → DONE
         └─ (vision failed) → DONE                 any state ─(deadline)→ TIMED_OUT

Each stage's output is the next stage's input. The whole run races a global
deadline. Persistence happens after the response is ready and never affects it.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Union

import httpx

from app.clients import GLOBAL_TIMEOUT_MS, HISTORY_READ_LIMIT, STAGE_PACING_MS
from app.database import append_scan_history, get_recent_scan_history, record_habits, save_scan_record
from app.image_handler import to_image_url
from app.intent_service import infer_intent
from app.product_lookup import fetch_product_by_barcode
from app.research_service import research_ingredients
from app.ui_service import generate_ui
from app.vision_service import analyze_product_image
from eatwise.ingredients import parse_ingredient_list
from eatwise.models import (
    DynamicUIResponse,
    ScanHistoryEntry,
    ScanRequest,
    VisionFailure,
    VisionSuccess,
)
from eatwise.ui_schema import build_vision_failed_envelope, extract_health_score

logger = logging.getLogger(__name__)

ScanOutcome = Union[DynamicUIResponse, VisionFailure]


class PipelineState(str, Enum):
    EXTRACTING = "EXTRACTING"
    INFERRING_INTENT = "INFERRING_INTENT"
    RESEARCHING = "RESEARCHING"
    SYNTHESIZING_UI = "SYNTHESIZING_UI"
    DONE = "DONE"
    TIMED_OUT = "TIMED_OUT"


class ScanInputError(Exception):
    """Request cannot be processed: nothing to extract ingredients from."""
    pass


class ScanTimeoutError(Exception):
    """The pipeline did not finish within the global deadline."""
    pass


@dataclass
class PipelineRun:
    request: ScanRequest
    state: PipelineState = PipelineState.EXTRACTING
    transitions: List[PipelineState] = field(default_factory=list)
    product_name: Optional[str] = None
    ingredients: List[str] = field(default_factory=list)
    persona: Optional[str] = None
    input_type: str = "image"

    def advance(self, state: PipelineState):
        logger.info(f"[PIPELINE] {self.state.value} → {state.value}")
        self.transitions.append(self.state)
        self.state = state


# Detached persistence tasks, kept referenced until they finish.
_background_tasks: Set[asyncio.Task] = set()


async def _pause():
    await asyncio.sleep(STAGE_PACING_MS / 1000)


async def _extract(run: PipelineRun) -> Optional[VisionFailure]:
    """Fill run.ingredients from the barcode, else from the image. Returns a failure if vision gave up."""
    request = run.request

    if request.barcode:
        try:
            product = await fetch_product_by_barcode(request.barcode)
        except (httpx.HTTPError, asyncio.TimeoutError) as e:
            logger.warning(f"[PIPELINE] Barcode lookup failed, falling back to image: {e}")
            product = None
        if product is not None:
            run.product_name = product.product_name
            run.ingredients = parse_ingredient_list(product.ingredients_text)
            if run.ingredients:
                run.input_type = "barcode"
            logger.info(f"[PIPELINE] Barcode gave {len(run.ingredients)} ingredients")

    if run.ingredients:
        return None

    if not request.image:
        raise ScanInputError("Image required when barcode lookup returns no ingredients")

    outcome = await analyze_product_image(request.image)
    if isinstance(outcome, VisionFailure):
        return outcome
    if isinstance(outcome, VisionSuccess):
        run.ingredients = list(outcome.ingredients)
        run.product_name = run.product_name or outcome.product_type
        return None
    raise TypeError(f"Unexpected vision outcome: {type(outcome).__name__}")


async def _run_pipeline(run: PipelineRun) -> ScanOutcome:
    failure = await _extract(run)
    if failure is not None:
        run.advance(PipelineState.DONE)
        return failure

    run.advance(PipelineState.INFERRING_INTENT)
    history = []
    if run.request.sessionId:
        history = await asyncio.to_thread(get_recent_scan_history, run.request.sessionId, HISTORY_READ_LIMIT)
    intent = await infer_intent(
        run.ingredients,
        product_type=run.product_name,
        scan_location=run.request.scanLocation,
        history=history,
        current_time=datetime.now(timezone.utc).isoformat(),
    )
    run.persona = intent.persona
    await _pause()

    run.advance(PipelineState.RESEARCHING)
    research = await research_ingredients(
        run.ingredients,
        intent.persona,
        risk_assessment=intent.risk_assessment,
        context_bias=intent.context_bias,
    )
    await _pause()

    run.advance(PipelineState.SYNTHESIZING_UI)
    ui = await generate_ui(
        research.analysis_text,
        intent.persona,
        consensus_status=research.consensus_status,
        trade_offs=research.trade_off_contexts,
    )

    run.advance(PipelineState.DONE)
    schedule_persistence(run, ui)
    return ui


async def handle_scan(request: ScanRequest, run: Optional[PipelineRun] = None) -> ScanOutcome:
    """
    Run one scan end to end under the global deadline.

    Raises:
        ScanInputError: neither image nor barcode, or barcode without ingredients and no image
        ImageValidationError: image payload is not a decodable image
        ScanTimeoutError: global deadline exceeded
    """
    if not request.image and not request.barcode:
        raise ScanInputError("Provide a product image or a barcode")
    if request.image:
        to_image_url(request.image)

    run = run or PipelineRun(request=request)
    try:
        return await asyncio.wait_for(_run_pipeline(run), timeout=GLOBAL_TIMEOUT_MS / 1000)
    except asyncio.TimeoutError:
        run.advance(PipelineState.TIMED_OUT)
        logger.error(f"[PIPELINE] Timed out after {GLOBAL_TIMEOUT_MS}ms")
        raise ScanTimeoutError("Scan took too long")


def build_scan_envelope(outcome: ScanOutcome) -> Dict[str, Any]:
    """JSON response body for a finished scan."""
    if isinstance(outcome, VisionFailure):
        return build_vision_failed_envelope(outcome)
    if isinstance(outcome, DynamicUIResponse):
        body = {"status": "success"}
        body.update(outcome.model_dump(mode="json", by_alias=True))
        return body
    raise TypeError(f"Unexpected scan outcome: {type(outcome).__name__}")


# ── Persistence (fire-and-forget) ─────────────────────────────────────

async def _persist(run: PipelineRun, ui: DynamicUIResponse):
    request = run.request
    health_score = extract_health_score(ui.components)
    product_name = run.product_name or "Unknown product"

    if request.sessionId:
        entry = ScanHistoryEntry(
            product_name=product_name,
            user_intent=run.persona,
            health_score=health_score,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        try:
            await asyncio.to_thread(append_scan_history, request.sessionId, entry)
        except Exception as e:
            logger.error(f"[PERSIST] History append failed: {e}")
        try:
            await asyncio.to_thread(record_habits, request.sessionId, run.ingredients)
        except Exception as e:
            logger.error(f"[PERSIST] Habit write failed: {e}")

    try:
        await asyncio.to_thread(
            save_scan_record,
            run.input_type,
            session_id=request.sessionId,
            barcode=request.barcode,
            product_name=product_name,
            detected_text=", ".join(run.ingredients),
            health_score=health_score,
            user_intent=run.persona,
        )
    except Exception as e:
        logger.error(f"[PERSIST] Scan record write failed: {e}")


def schedule_persistence(run: PipelineRun, ui: DynamicUIResponse) -> asyncio.Task:
    task = asyncio.create_task(_persist(run, ui))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task
