"""
FastAPI Backend — Mutation Editing API v1.

Stateless: every request replays the entity stream from the event store.
No editing state is held in memory between requests. Requests on the same
entity are serialized by a per-entity lock; a writer that still loses the
race to the store gets 409 instead of renumbering the stream.

Endpoints:
  POST   /entities/{id}            — start a stream (optionally restoring values)
  GET    /entities/{id}/state      — replay + return state and diagnostics
  GET    /entities/{id}/mutation-items — mutation items applicable to the host
  POST   /entities/{id}/select     — choose a mutation item
  POST   /entities/{id}/begin      — open one attribute for editing
  POST   /entities/{id}/validate   — validate edit-field text (no state change)
  POST   /entities/{id}/commit     — confirm the edit-field text
  POST   /entities/{id}/cancel     — close the edit without committing
  DELETE /entities/{id}/mutation   — remove the mutation
  POST   /entities/{id}/replace    — swap the host item for a variation
  POST   /entities/{id}/quantity   — set total / active counts
  GET    /health
"""
from __future__ import annotations

import json
import logging
import os
import sys
import threading
from typing import Dict, Iterator, Optional

from dotenv import load_dotenv

env_path = os.path.join(os.path.dirname(__file__), ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

# Add project root to path for kernel imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from mutation_kernel.constants import DEBOUNCE_DELAY_MS
from mutation_kernel.domain_types import EntityKind, MutationConstants, TransitionResult
from mutation_kernel.hashing import canonical_hash

from mutation_runtime.event_repository import EventRepository, SequenceConflictError
from mutation_runtime.interfaces import (
    MetadataProvider,
    MutationItemNotApplicableError,
    RecordingPipeline,
    StaticMetadataProvider,
    UnknownMutationItemError,
)
from mutation_runtime.session import MutationEditingSession, StreamCorruptedError

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DATABASE_PATH = os.environ.get(
    "DATABASE_PATH", os.path.join(os.path.dirname(__file__), "mutations.db"),
)
METADATA_PATH = os.environ.get("METADATA_PATH", "")
FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:3000")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
DEBOUNCE_DELAY = int(os.environ.get("DEBOUNCE_DELAY_MS", DEBOUNCE_DELAY_MS))

logging.basicConfig(
    level=LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Mutation Editing API",
    version="1.0.0",
    description="Attribute mutation editing — Event-Sourced API",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL, "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class OpenEntityRequest(BaseModel):
    item_type_id: int
    entity_kind: EntityKind = EntityKind.DRONE
    mutation_item_id: Optional[int] = None
    values: Dict[int, float] = {}


class SelectRequest(BaseModel):
    mutation_item_id: int


class BeginRequest(BaseModel):
    attribute_id: int


class TextRequest(BaseModel):
    text: str


class ReplaceRequest(BaseModel):
    item_type_id: int


class QuantityRequest(BaseModel):
    total: Optional[int] = None
    active: Optional[int] = None


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

_pipeline = RecordingPipeline()
_metadata: Optional[MetadataProvider] = None
_entity_locks: Dict[str, threading.Lock] = {}
_entity_locks_guard = threading.Lock()


def lock_entity(entity_id: str) -> Iterator[None]:
    """Hold the entity's lock from replay until the last append."""
    with _entity_locks_guard:
        lock = _entity_locks.setdefault(entity_id, threading.Lock())
    with lock:
        yield


def get_repo() -> Iterator[EventRepository]:
    repo = EventRepository(DATABASE_PATH)
    try:
        yield repo
    finally:
        repo.close()


def get_metadata() -> MetadataProvider:
    global _metadata
    if _metadata is None:
        if METADATA_PATH:
            with open(METADATA_PATH, encoding="utf-8") as fh:
                _metadata = StaticMetadataProvider.from_dict(json.load(fh))
            logger.info("Loaded mutation metadata from %s", METADATA_PATH)
        else:
            logger.warning("METADATA_PATH not configured; no mutation items available")
            _metadata = StaticMetadataProvider({})
    return _metadata


def get_pipeline() -> RecordingPipeline:
    return _pipeline


# ---------------------------------------------------------------------------
# Core helpers
# ---------------------------------------------------------------------------


def _build_session(
    entity_id: str,
    repo: EventRepository,
    metadata: MetadataProvider,
    pipeline: RecordingPipeline,
    item_type_id: int = 0,
    entity_kind: EntityKind = EntityKind.DRONE,
) -> MutationEditingSession:
    total, active = pipeline.quantities.get(entity_id, (1, 0))
    return MutationEditingSession(
        entity_id=entity_id,
        item_type_id=item_type_id,
        metadata=metadata,
        pipeline=pipeline,
        entity_kind=entity_kind,
        event_repo=repo,
        total=total,
        active=active,
        constants=MutationConstants(debounce_delay_ms=DEBOUNCE_DELAY),
    )


def _open_existing(
    entity_id: str,
    repo: EventRepository,
    metadata: MetadataProvider,
    pipeline: RecordingPipeline,
) -> MutationEditingSession:
    """Replay an existing stream. 404 if the entity has never been opened."""
    if repo.get_last_sequence(entity_id) == 0:
        raise HTTPException(status_code=404, detail=f"Unknown entity {entity_id!r}")
    session = _build_session(entity_id, repo, metadata, pipeline)
    session.open()
    return session


def _project(session: MutationEditingSession) -> dict:
    state = session.state
    return {
        "event_count": session.current_sequence,
        "state_hash": canonical_hash(state),
        "state": session.get_state(),
        "diagnostics": session.get_diagnostics(),
    }


def _require_success(result: TransitionResult, status_code: int = 409) -> None:
    if not result.success:
        logger.warning("Rejected %s: %s", result.event_type, result.reason)
        raise HTTPException(status_code=status_code, detail=result.reason)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


@app.exception_handler(UnknownMutationItemError)
async def unknown_mutation_item(request: Request, exc: UnknownMutationItemError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(MutationItemNotApplicableError)
async def mutation_item_not_applicable(
    request: Request, exc: MutationItemNotApplicableError,
):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(SequenceConflictError)
async def sequence_conflict(request: Request, exc: SequenceConflictError):
    logger.warning("Conflicting write on %s: %s", exc.entity_id, exc)
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(StreamCorruptedError)
async def stream_corrupted(request: Request, exc: StreamCorruptedError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/entities/{entity_id}")
def open_entity(
    entity_id: str,
    req: OpenEntityRequest,
    _lock: None = Depends(lock_entity),
    repo: EventRepository = Depends(get_repo),
    metadata: MetadataProvider = Depends(get_metadata),
    pipeline: RecordingPipeline = Depends(get_pipeline),
):
    """
    Start a new stream. Values the fitting already stores are restored
    through the normal edit path; rejected values are reported.
    """
    if repo.get_last_sequence(entity_id) > 0:
        raise HTTPException(status_code=409, detail=f"Entity {entity_id!r} already exists")
    session = _build_session(
        entity_id, repo, metadata, pipeline, req.item_type_id, req.entity_kind,
    )
    rejected = session.open(req.mutation_item_id, req.values)
    response = _project(session)
    response["rejected"] = [
        {"attribute_id": r.attribute_id, "multiplier": r.multiplier, "reason": r.reason}
        for r in rejected
    ]
    return response


@app.get("/entities/{entity_id}/state")
def get_state(
    entity_id: str,
    _lock: None = Depends(lock_entity),
    repo: EventRepository = Depends(get_repo),
    metadata: MetadataProvider = Depends(get_metadata),
    pipeline: RecordingPipeline = Depends(get_pipeline),
):
    """Load all events → replay → return state + diagnostics."""
    return _project(_open_existing(entity_id, repo, metadata, pipeline))


@app.get("/entities/{entity_id}/mutation-items")
def list_mutation_items(
    entity_id: str,
    _lock: None = Depends(lock_entity),
    repo: EventRepository = Depends(get_repo),
    metadata: MetadataProvider = Depends(get_metadata),
    pipeline: RecordingPipeline = Depends(get_pipeline),
):
    """Mutation items that can be applied to the entity's current host item."""
    session = _open_existing(entity_id, repo, metadata, pipeline)
    return {
        "item_type_id": session.state.item_type_id,
        "mutation_items": [
            {
                "mutation_item_id": mutation_item_id,
                "attributes": [
                    r.display_name for r in metadata.attribute_ranges(mutation_item_id)
                ],
            }
            for mutation_item_id in session.available_mutation_items()
        ],
    }


@app.post("/entities/{entity_id}/select")
def select_mutation_item(
    entity_id: str,
    req: SelectRequest,
    _lock: None = Depends(lock_entity),
    repo: EventRepository = Depends(get_repo),
    metadata: MetadataProvider = Depends(get_metadata),
    pipeline: RecordingPipeline = Depends(get_pipeline),
):
    session = _open_existing(entity_id, repo, metadata, pipeline)
    _require_success(session.select_mutation_item(req.mutation_item_id))
    return _project(session)


@app.post("/entities/{entity_id}/begin")
def begin_editing(
    entity_id: str,
    req: BeginRequest,
    _lock: None = Depends(lock_entity),
    repo: EventRepository = Depends(get_repo),
    metadata: MetadataProvider = Depends(get_metadata),
    pipeline: RecordingPipeline = Depends(get_pipeline),
):
    session = _open_existing(entity_id, repo, metadata, pipeline)
    _require_success(session.begin_editing(req.attribute_id))
    return _project(session)


@app.post("/entities/{entity_id}/validate")
def validate_input(
    entity_id: str,
    req: TextRequest,
    _lock: None = Depends(lock_entity),
    repo: EventRepository = Depends(get_repo),
    metadata: MetadataProvider = Depends(get_metadata),
    pipeline: RecordingPipeline = Depends(get_pipeline),
):
    """Validate edit-field text against the attribute being edited."""
    session = _open_existing(entity_id, repo, metadata, pipeline)
    if session.state.editing_attribute_id is None:
        raise HTTPException(status_code=409, detail="No attribute is being edited")
    verdict = session.check_input(req.text)
    return {
        "kind": verdict.kind.value,
        "multiplier": verdict.multiplier,
        "message": verdict.message,
        "confirmable": verdict.is_confirmable,
    }


@app.post("/entities/{entity_id}/commit")
def commit_editing_value(
    entity_id: str,
    req: TextRequest,
    _lock: None = Depends(lock_entity),
    repo: EventRepository = Depends(get_repo),
    metadata: MetadataProvider = Depends(get_metadata),
    pipeline: RecordingPipeline = Depends(get_pipeline),
):
    session = _open_existing(entity_id, repo, metadata, pipeline)
    if session.state.editing_attribute_id is None:
        raise HTTPException(status_code=409, detail="No attribute is being edited")
    _require_success(session.confirm(req.text), status_code=422)
    return _project(session)


@app.post("/entities/{entity_id}/cancel")
def cancel_editing(
    entity_id: str,
    _lock: None = Depends(lock_entity),
    repo: EventRepository = Depends(get_repo),
    metadata: MetadataProvider = Depends(get_metadata),
    pipeline: RecordingPipeline = Depends(get_pipeline),
):
    session = _open_existing(entity_id, repo, metadata, pipeline)
    _require_success(session.cancel_editing())
    return _project(session)


@app.delete("/entities/{entity_id}/mutation")
def clear_mutation(
    entity_id: str,
    _lock: None = Depends(lock_entity),
    repo: EventRepository = Depends(get_repo),
    metadata: MetadataProvider = Depends(get_metadata),
    pipeline: RecordingPipeline = Depends(get_pipeline),
):
    session = _open_existing(entity_id, repo, metadata, pipeline)
    _require_success(session.clear_mutation())
    return _project(session)


@app.post("/entities/{entity_id}/replace")
def replace_item(
    entity_id: str,
    req: ReplaceRequest,
    _lock: None = Depends(lock_entity),
    repo: EventRepository = Depends(get_repo),
    metadata: MetadataProvider = Depends(get_metadata),
    pipeline: RecordingPipeline = Depends(get_pipeline),
):
    session = _open_existing(entity_id, repo, metadata, pipeline)
    _require_success(session.replace_item(req.item_type_id))
    return _project(session)


@app.post("/entities/{entity_id}/quantity")
def update_quantity(
    entity_id: str,
    req: QuantityRequest,
    _lock: None = Depends(lock_entity),
    repo: EventRepository = Depends(get_repo),
    metadata: MetadataProvider = Depends(get_metadata),
    pipeline: RecordingPipeline = Depends(get_pipeline),
):
    """
    Apply total first, then active, and close the surface. The fit is
    recomputed only when a counter actually changed.
    """
    session = _open_existing(entity_id, repo, metadata, pipeline)
    if req.total is not None:
        session.set_total(req.total)
    if req.active is not None:
        session.set_active(req.active)
    report = session.close()
    return {
        "total": session.pair.total,
        "active": session.pair.active,
        "total_changed": report.total_changed,
        "active_changed": report.active_changed_from_baseline,
        "recomputed": report.requires_recompute,
    }
