import asyncio
import logging
import math

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from yinyang.models.request import ERROR
from yinyang.schemas.analysis import ErrorResponse, HealthResponse, SubmissionBody
from yinyang.services.errors import Unauthorized, status_for_kind

logger = logging.getLogger(__name__)

router = APIRouter()

KEY_HEADER = "X-Yinyang-OpenAI-Key"
THRESHOLD_MOD_HEADER = "X-Yinyang-Threshold-Mod"


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-real-ip")
    if forwarded:
        return forwarded
    return request.client.host if request.client else None


def _error(status_code: int, kind: str, message: str, request_id: str | None = None) -> JSONResponse:
    body = ErrorResponse(kind=kind, message=message, requestId=request_id)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def _resolve_api_key(request: Request, ip: str | None) -> str | None:
    """Caller's key, swapped for the service key when it is one of the built-in aliases."""
    settings = request.app.state.settings
    api_key = request.headers.get(KEY_HEADER)
    if api_key and api_key in settings.BUILTIN_KEY_ALIASES:
        logger.info("[submit] request using builtin OpenAI key | ip=%s", ip)
        return settings.OPENAI_API_KEY or None
    return api_key


def _threshold_modifier(request: Request) -> float | None:
    raw = request.headers.get(THRESHOLD_MOD_HEADER)
    if raw is None or not raw.strip():
        return None
    value = float(raw)
    if not math.isfinite(value):
        raise ValueError(f"{THRESHOLD_MOD_HEADER} must be finite")
    return value


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok")


@router.get("/blobs/{storage_id}")
async def get_blob(storage_id: str, request: Request) -> Response:
    blob_store = request.app.state.blob_store
    data = await asyncio.to_thread(blob_store.get, storage_id)
    if data is None:
        return Response(status_code=404)
    return Response(content=data, media_type=blob_store.guess_content_type(storage_id))


@router.get("/")
async def poll_without_id() -> Response:
    return Response(status_code=404)


@router.get("/{request_id}")
async def poll(request_id: str, request: Request) -> Response:
    # Cross-process staleness shows up as "pending"; clients simply poll again.
    result = await request.app.state.analysis_service.poll(request_id)
    if result.state == "not_found":
        return Response(status_code=404)
    if result.state == "pending":
        return Response(status_code=202)
    return JSONResponse(content=result.record.to_dict())


@router.post("/")
async def submit(request: Request) -> Response:
    ip = _client_ip(request)
    raw_body = (await request.body()).decode("utf-8", errors="replace")
    logger.info("[submit] imageUrl: %s | ip=%s", raw_body.strip(), ip)

    try:
        body = SubmissionBody(url=raw_body)
    except ValidationError as exc:
        message = exc.errors()[0].get("msg", "Invalid image URL")
        logger.warning("[submit] rejected body | ip=%s | reason=%s", ip, message)
        return _error(400, "BadRequest", message)

    try:
        modifier = _threshold_modifier(request)
    except ValueError:
        logger.warning("[submit] bad threshold modifier | ip=%s", ip)
        return _error(400, "BadRequest", f"{THRESHOLD_MOD_HEADER} must be a number")

    api_key = _resolve_api_key(request, ip)
    service = request.app.state.analysis_service
    try:
        record = await service.submit(body.url, api_key, threshold_modifier=modifier, requestor_ip=ip)
    except Unauthorized as exc:
        logger.warning("[submit] unauthorized | ip=%s", ip)
        return _error(exc.status_code, exc.kind, exc.message)

    if record.status == ERROR:
        return _error(
            status_for_kind(record.error_kind),
            record.error_kind,
            record.error_message,
            request_id=record.request_id,
        )
    return JSONResponse(content=record.to_dict())
