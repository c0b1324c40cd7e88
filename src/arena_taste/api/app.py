"""
FastAPI service for reference matching and manual triage.
Exposes REST endpoints that wrap the Are.na client, the vision model and the
local index store. Collaborators come from dependencies so they can be swapped.
"""

from __future__ import annotations

import argparse
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from openai import OpenAIError
from pydantic import BaseModel, Field

from ..arena_client import ArenaAPIError, ArenaClient
from ..config import AppConfig, load_config
from ..export_pack import build_reference_pack, select_references
from ..matching import merge_matches, merge_tag_sets, top_matches, with_explanations
from ..models import CustomChannel, Destination, MatchResult, TagSet, system_titles
from ..storage import IndexStore
from ..triage import InvalidTransition, TriageSession
from ..vision import TagExtraction, Unparseable, VisionModel, parse_data_url

LOGGER = logging.getLogger(__name__)


# Pydantic models for request/response
class MatchRequest(BaseModel):
    image: Optional[str] = Field(None, description="Screenshot as a data URL")
    images: Optional[List[str]] = Field(None, description="Several screenshots as data URLs")
    channel: Optional[str] = Field(None, description="Indexed channel slug to match against")
    explain: bool = Field(False, description="Ask the model for one-line explanations")


class MatchResponse(BaseModel):
    extractedTags: Dict[str, List[str]]
    oneLiner: Optional[str] = None
    matches: List[Dict[str, Any]]
    totalIndexed: int


class ExportPackRequest(BaseModel):
    blockIds: List[int] = Field(..., description="Matched block ids, best first")
    extractedTags: Dict[str, List[str]] = Field(default_factory=dict, description="Tags from /api/match")
    channel: Optional[str] = Field(None, description="Indexed channel slug the matches came from")
    analyze: bool = Field(True, description="Describe what is distinctive about each reference")


class ClassifyRequest(BaseModel):
    blockId: int = Field(..., description="Are.na block id")
    channel: Optional[str] = Field(None, description="Managed destination key, e.g. 'ui-ux'")
    customChannel: Optional[str] = Field(None, description="Title of a user channel")
    createNew: bool = Field(False, description="Create customChannel before connecting")


class UndoRequest(BaseModel):
    blockId: int
    channel: Optional[str] = None
    customChannel: Optional[str] = None
    isSkip: bool = False


class BlockRequest(BaseModel):
    blockId: int


class ChannelActionResponse(BaseModel):
    success: bool
    channel: str
    slug: Optional[str] = None
    created: bool = False


class DeleteResponse(BaseModel):
    success: bool
    disconnectedFrom: int


class BlocksResponse(BaseModel):
    blocks: List[Dict[str, Any]]
    total: int
    channels: List[Dict[str, Any]]


class TriageResponse(BaseModel):
    state: str
    index: Optional[int] = None
    total: int
    remaining: int
    handled: int
    skipped: int
    block: Optional[Dict[str, Any]] = None


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    arena_configured: bool
    model_configured: bool


# Initialize FastAPI app
app = FastAPI(
    title="Are.na Taste API",
    description="Reference matching and manual triage for Are.na blocks",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.state.triage = TriageSession()


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


# ==================== DEPENDENCIES ====================

@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    return load_config()


def get_arena_client(config: AppConfig = Depends(get_config)) -> ArenaClient:
    if not config.arena.token or not config.arena.user_slug:
        raise HTTPException(status_code=503, detail="ARENA_TOKEN not configured")
    return ArenaClient(config.arena)


def get_vision_model(config: AppConfig = Depends(get_config)) -> VisionModel:
    if not config.model.api_key:
        raise HTTPException(status_code=503, detail="GEMINI_API_KEY not configured")
    return VisionModel(config.model)


def get_store(config: AppConfig = Depends(get_config)) -> IndexStore:
    return IndexStore(config.storage.index_dir)


def get_session(request: Request) -> TriageSession:
    return request.app.state.triage


def _arena_failure(exc: ArenaAPIError, not_found: str = "Not found") -> HTTPException:
    LOGGER.error("Are.na request failed: %s", exc)
    if exc.status == 404:
        return HTTPException(status_code=404, detail=not_found)
    return HTTPException(status_code=502, detail=str(exc))


# ==================== ROUTES ====================

@app.get("/", response_model=Dict[str, str])
async def root():
    """Root endpoint."""
    return {"message": "Are.na Taste API", "version": "0.1.0", "docs": "/docs"}


@app.get("/health", response_model=HealthResponse)
def health_check(config: AppConfig = Depends(get_config)):
    """Health check endpoint."""
    arena_ok = bool(config.arena.token and config.arena.user_slug)
    model_ok = bool(config.model.api_key)
    return HealthResponse(
        status="healthy" if arena_ok and model_ok else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        arena_configured=arena_ok,
        model_configured=model_ok,
    )


def _extract(model: VisionModel, data_url: str) -> TagExtraction:
    try:
        image = parse_data_url(data_url)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    try:
        extraction = model.extract_tags(image)
    except OpenAIError as exc:
        LOGGER.error("Tag extraction failed: %s", exc)
        raise HTTPException(status_code=502, detail="Model request failed")
    if isinstance(extraction, Unparseable):
        LOGGER.warning("Unparseable model reply: %s", extraction.reason)
        raise HTTPException(status_code=502, detail="Failed to extract tags")
    return extraction


@app.post("/api/match", response_model=MatchResponse)
def match_reference(
    request: MatchRequest,
    config: AppConfig = Depends(get_config),
    model: VisionModel = Depends(get_vision_model),
    store: IndexStore = Depends(get_store),
):
    """
    Tag one or more screenshots and rank the indexed channel against them.

    A single image returns up to ``limit`` matches; several images are scored
    separately and merged, keeping each block's best score.
    """
    images = list(request.images or [])
    if request.image:
        images.insert(0, request.image)
    if not images:
        raise HTTPException(status_code=400, detail="No image provided")

    channel_slug = request.channel or config.storage.default_channel
    index = store.load_index(channel_slug)
    if index is None:
        raise HTTPException(
            status_code=404,
            detail=f"Index not found. Run: arena-index --channel={channel_slug}",
        )

    extractions = [_extract(model, data_url) for data_url in images]
    if len(extractions) == 1:
        matches: List[MatchResult] = top_matches(
            extractions[0].tags, index.blocks, config.matching.limit
        )
    else:
        per_image = [
            top_matches(e.tags, index.blocks, config.matching.multi_image_limit)
            for e in extractions
        ]
        matches = merge_matches(per_image, config.matching.multi_image_limit)

    one_liner = extractions[0].one_liner
    if request.explain or config.matching.explain:
        matches = with_explanations(model, one_liner, matches)

    return MatchResponse(
        extractedTags=merge_tag_sets(e.tags for e in extractions).to_dict(),
        oneLiner=one_liner,
        matches=[m.to_dict() for m in matches],
        totalIndexed=len(index.blocks),
    )


@app.post("/api/export-pack")
def export_reference_pack(
    request: ExportPackRequest,
    config: AppConfig = Depends(get_config),
    model: VisionModel = Depends(get_vision_model),
    store: IndexStore = Depends(get_store),
):
    """Zip the top matched references with a design spec for hand-off."""
    if not request.blockIds:
        raise HTTPException(status_code=400, detail="No matches provided")

    channel_slug = request.channel or config.storage.default_channel
    index = store.load_index(channel_slug)
    if index is None:
        raise HTTPException(
            status_code=404,
            detail=f"Index not found. Run: arena-index --channel={channel_slug}",
        )

    query = TagSet.from_dict(request.extractedTags)
    references = select_references(index, request.blockIds, query)
    if not references:
        raise HTTPException(status_code=404, detail="None of the requested blocks are indexed")

    pack = build_reference_pack(
        references,
        query,
        model=model if request.analyze else None,
        style_guide=store.load_style_guide(channel_slug),
        anti_patterns=store.load_anti_patterns(channel_slug, high_confidence_only=True),
    )
    LOGGER.info("Exported %d references from %s", len(pack.filenames), channel_slug)
    return Response(
        content=pack.archive,
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{channel_slug}-references.zip"',
            "X-Reference-Count": str(len(pack.filenames)),
        },
    )


@app.post("/api/classify", response_model=ChannelActionResponse)
def classify_block(request: ClassifyRequest, client: ArenaClient = Depends(get_arena_client)):
    """Connect a block to a managed destination or a custom channel."""
    created = False
    try:
        if request.createNew and request.customChannel:
            channel = client.create_channel(request.customChannel, "private")
            title, slug = request.customChannel, channel.slug
            created = True
        elif request.customChannel:
            title = request.customChannel
            slug = client.resolve_channel_slug(CustomChannel(title))
        elif request.channel:
            destination = Destination.lookup(request.channel)
            if destination is None or destination is Destination.SKIPPED:
                raise HTTPException(status_code=400, detail="Invalid channel")
            title = destination.title
            slug = client.resolve_channel_slug(destination)
        else:
            raise HTTPException(status_code=400, detail="Missing channel")

        if not slug:
            raise HTTPException(status_code=404, detail=f'Channel "{title}" not found')
        client.connect_block(request.blockId, slug)
    except ArenaAPIError as exc:
        raise _arena_failure(exc, "Block not found")

    return ChannelActionResponse(success=True, channel=title, slug=slug, created=created)


@app.post("/api/skip", response_model=ChannelActionResponse)
def skip_block(request: BlockRequest, client: ArenaClient = Depends(get_arena_client)):
    """File a block under the skipped channel, creating it on first use."""
    try:
        channel = client.skipped_channel()
        client.connect_block(request.blockId, channel.slug)
    except ArenaAPIError as exc:
        raise _arena_failure(exc, "Block not found")
    return ChannelActionResponse(success=True, channel=channel.title, slug=channel.slug)


@app.post("/api/undo", response_model=ChannelActionResponse)
def undo_classification(request: UndoRequest, client: ArenaClient = Depends(get_arena_client)):
    """Disconnect a block from the channel it was just filed under."""
    if request.isSkip:
        target = Destination.SKIPPED
    elif request.customChannel:
        target = CustomChannel(request.customChannel)
    elif request.channel:
        target = Destination.lookup(request.channel)
        if target is None:
            raise HTTPException(status_code=400, detail="Invalid channel")
    else:
        raise HTTPException(status_code=400, detail="Missing channel")

    try:
        slug = client.resolve_channel_slug(target)
        if not slug:
            raise HTTPException(status_code=404, detail=f'Channel "{target.title}" not found')
        client.disconnect_block(request.blockId, slug)
    except ArenaAPIError as exc:
        raise _arena_failure(exc, "Block not found in channel")
    return ChannelActionResponse(success=True, channel=target.title, slug=slug)


@app.post("/api/delete", response_model=DeleteResponse)
def delete_block(request: BlockRequest, client: ArenaClient = Depends(get_arena_client)):
    """Remove a block from every channel it is connected to."""
    try:
        disconnected = client.delete_block(request.blockId)
    except ArenaAPIError as exc:
        raise _arena_failure(exc, "Block not found")
    return DeleteResponse(success=True, disconnectedFrom=disconnected)


def _block_payload(block, source_channels: List[str]) -> Dict[str, Any]:
    payload = block.to_dict()
    payload["sourceChannels"] = list(source_channels)
    return payload


@app.get("/api/blocks", response_model=BlocksResponse)
def list_unclassified(client: ArenaClient = Depends(get_arena_client)):
    """Blocks that do not yet sit in any managed channel."""
    try:
        items, channels = client.get_unclassified_blocks()
    except ArenaAPIError as exc:
        raise _arena_failure(exc)

    system_lower = {t.lower() for t in system_titles()}
    return BlocksResponse(
        blocks=[_block_payload(block, titles) for block, titles in items],
        total=len(items),
        channels=[
            {
                "title": c.title,
                "slug": c.slug,
                "count": c.length,
                "isSystem": c.title.lower() in system_lower,
            }
            for c in channels
        ],
    )


# ==================== TRIAGE SESSION ====================

def _triage_response(session: TriageSession) -> TriageResponse:
    current = session.current()
    block = _block_payload(*current) if current is not None else None
    return TriageResponse(block=block, **session.status())


@app.get("/api/triage", response_model=TriageResponse)
def triage_status(
    session: TriageSession = Depends(get_session),
    client: ArenaClient = Depends(get_arena_client),
):
    """Current triage item; the queue is fetched on first call."""
    with session.lock:
        if session.state == "loading":
            try:
                items, _ = client.get_unclassified_blocks()
            except ArenaAPIError as exc:
                raise _arena_failure(exc)
            session.load(items)
        return _triage_response(session)


@app.post("/api/triage/advance", response_model=TriageResponse)
def triage_advance(session: TriageSession = Depends(get_session)):
    with session.lock:
        try:
            session.advance()
        except InvalidTransition as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        return _triage_response(session)


@app.post("/api/triage/skip", response_model=TriageResponse)
def triage_skip(session: TriageSession = Depends(get_session)):
    with session.lock:
        try:
            session.skip()
        except InvalidTransition as exc:
            raise HTTPException(status_code=409, detail=str(exc))
        return _triage_response(session)


@app.post("/api/triage/reset", response_model=TriageResponse)
def triage_reset(session: TriageSession = Depends(get_session)):
    with session.lock:
        session.reset()
        return _triage_response(session)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the Are.na taste API server.")
    parser.add_argument("--host", type=str, default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true")
    parser.add_argument("--log-level", type=str, default="info")
    return parser.parse_args()


def serve():
    args = _parse_args()
    print("Starting Are.na Taste API...")
    print(f"API Documentation: http://localhost:{args.port}/docs")
    print(f"Health Check: http://localhost:{args.port}/health")
    print("\nPress CTRL+C to stop\n")
    uvicorn.run(
        "arena_taste.api.app:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    serve()
