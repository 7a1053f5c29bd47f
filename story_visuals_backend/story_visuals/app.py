from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import logging
from contextlib import asynccontextmanager
from typing import Optional

# Ensure .env is loaded before importing modules that initialize API clients
from .settings import has_all_keys, ALLOWED_ORIGINS
from .models import BatchRequest, BatchStarted, BatchStatus, SceneRequest
from .batch_store import BatchNotFoundError, get_batch_store
from .orchestrator import BatchOrchestrator, BatchValidationError

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

_orchestrator: Optional[BatchOrchestrator] = None

@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if _orchestrator is not None:
        logger.info(f"Shutting down with {_orchestrator.in_flight} batch(es) in flight")
        await _orchestrator.aclose()

app = FastAPI(title="Story Visuals Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["POST", "GET", "OPTIONS"],
    allow_headers=["*"],
)

def get_orchestrator() -> BatchOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = BatchOrchestrator(get_batch_store())
    return _orchestrator

def require_keys():
    if not has_all_keys():
        logger.error("API keys missing, cannot generate images")
        raise HTTPException(500, "Server configuration error: missing required API keys")

@app.exception_handler(BatchValidationError)
async def _validation_error(request: Request, exc: BatchValidationError):
    logger.warning(f"Rejected {request.url.path}: {exc}")
    return JSONResponse(status_code=400, content={"detail": str(exc)})

@app.exception_handler(BatchNotFoundError)
async def _not_found(request: Request, exc: BatchNotFoundError):
    return JSONResponse(status_code=404, content={"detail": "Batch not found", "batchId": str(exc)})

@app.get("/health")
def health():
    keys_ok = has_all_keys()
    logger.info(f"Health check: API keys present = {keys_ok}")
    return {"ok": True, "has_keys": keys_ok}

@app.post("/v1/scenes:batch", status_code=202, response_model=BatchStarted,
          dependencies=[Depends(require_keys)])
async def start_batch(req: BatchRequest, orchestrator: BatchOrchestrator = Depends(get_orchestrator)):
    logger.info(f"Starting scene batch for {req.main_character_name or '<unnamed>'}")
    batch_id = await orchestrator.start_batch(
        req.personalized_story_text,
        req.main_character_image,
        req.main_character_name,
    )
    status = await orchestrator.get_status(batch_id)
    return BatchStarted(batch_id=batch_id, total_scenes=status.total_count, status=status.status)

@app.get("/v1/batches/{batch_id}", response_model=BatchStatus)
async def batch_status(batch_id: str, orchestrator: BatchOrchestrator = Depends(get_orchestrator)):
    return await orchestrator.get_status(batch_id)

@app.post("/v1/scenes:generate", dependencies=[Depends(require_keys)])
async def generate_scene(req: SceneRequest, orchestrator: BatchOrchestrator = Depends(get_orchestrator)):
    scene_number = req.scene_id or 1
    logger.info(f"Starting single scene generation for scene {req.scene_id or 'unknown'}")
    result = await orchestrator.generate_single_scene(
        req.scene_text,
        req.main_character_image,
        req.main_character_name,
        scene_number=scene_number,
    )
    if not result.ok:
        return JSONResponse(
            status_code=502,
            content={"error": "Failed to generate scene image.", "reason": result.error, "sceneId": req.scene_id},
        )
    return {
        "success": True,
        "sceneId": req.scene_id,
        "imageUrl": result.image_url,
        "sceneText": req.scene_text,
    }
