"""aiohttp web application exposing the transcription HTTP API."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from aiohttp import hdrs, web

from ..errors import InternalError, InvalidInput, NotFound, ServiceUnavailable, UpstreamFailure
from ..models.api import HistoryResponse, TranscriptionPayload
from ..models.transcription import TranscriptionRecord
from ..services.transcription_service import TranscriptionService
from ..storage import LocalBlobStore
from ..transcription.base import AudioUpload

logger = logging.getLogger(__name__)

SERVICE_KEY = web.AppKey("service", TranscriptionService)

# Largest file the speech-to-text API accepts
MAX_UPLOAD_BYTES = 25 * 1024 * 1024
DEFAULT_SPEAKER_COUNT = 2


def error_response(message: str, status: int) -> web.Response:
    return web.json_response({"success": False, "error": message}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Map domain errors to JSON error bodies; details of unexpected errors stay in the log."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except InvalidInput as e:
        logger.info(f"{request.method} {request.path}: invalid input: {e}")
        return error_response(str(e), 400)
    except NotFound as e:
        return error_response(str(e), 404)
    except ServiceUnavailable as e:
        logger.error(f"{request.method} {request.path}: {e}")
        return error_response(str(e), 500)
    except UpstreamFailure as e:
        logger.error(f"{request.method} {request.path}: upstream failure: {e}")
        return error_response("Failed to transcribe audio", 500)
    except InternalError as e:
        logger.error(f"{request.method} {request.path}: {e}")
        return error_response("Internal server error", 500)
    except Exception:
        logger.exception(f"Unhandled error in {request.method} {request.path}")
        return error_response("Internal server error", 500)


async def read_upload(request: web.Request) -> Tuple[Optional[AudioUpload], Dict[str, str]]:
    """Read the ``audio`` file and the plain form fields of a multipart request.

    A request that is not multipart yields no upload, so the service can
    report the configuration check before the missing file.
    """
    if not request.content_type.startswith("multipart/"):
        return None, {}

    upload = None
    fields: Dict[str, str] = {}
    reader = await request.multipart()
    async for part in reader:
        if part.name == "audio":
            data = await part.read()
            upload = AudioUpload(
                filename=part.filename or "audio",
                content_type=part.headers.get(hdrs.CONTENT_TYPE, "application/octet-stream"),
                data=bytes(data),
            )
        elif part.name:
            fields[part.name] = await part.text()
    return upload, fields


def parse_speaker_count(value: Optional[str]) -> int:
    if value is None or not value.strip():
        return DEFAULT_SPEAKER_COUNT
    try:
        count = int(value.strip())
    except ValueError:
        raise InvalidInput("speakerCount must be a positive integer")
    if count < 1:
        raise InvalidInput("speakerCount must be a positive integer")
    return count


def parse_speaker_names(value: Optional[str]) -> Optional[list]:
    if value is None or not value.strip():
        return None
    try:
        names = json.loads(value)
    except ValueError:
        raise InvalidInput("speakerNames must be a JSON list of strings")
    if not isinstance(names, list) or not all(isinstance(name, str) for name in names):
        raise InvalidInput("speakerNames must be a JSON list of strings")
    return names


def transcription_response(record: TranscriptionRecord) -> web.Response:
    return web.json_response({
        "success": True,
        "transcription": TranscriptionPayload.from_record(record).to_json(),
    })


async def transcribe(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    upload, _ = await read_upload(request)
    record = await service.transcribe(upload)
    return transcription_response(record)


async def diarize(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    upload, fields = await read_upload(request)
    speaker_count = parse_speaker_count(fields.get("speakerCount"))
    speaker_names = parse_speaker_names(fields.get("speakerNames"))
    record = await service.diarize(upload, speaker_count=speaker_count, speaker_names=speaker_names)
    return transcription_response(record)


async def list_transcriptions(request: web.Request) -> web.Response:
    page = await asyncio.to_thread(request.app[SERVICE_KEY].history.list)
    return web.json_response(HistoryResponse.from_page(page).to_json())


async def delete_transcription(request: web.Request) -> web.Response:
    record_id = request.match_info["id"]
    await request.app[SERVICE_KEY].history.delete(record_id)
    return web.json_response({"success": True, "message": "Transcription deleted successfully"})


async def clear_transcriptions(request: web.Request) -> web.Response:
    deleted = await request.app[SERVICE_KEY].history.clear_all()
    return web.json_response({
        "success": True,
        "message": f"Deleted {deleted} transcriptions",
        "deletedCount": deleted,
    })


async def health(request: web.Request) -> web.Response:
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        service = request.app[SERVICE_KEY]
        services = {
            "speechToText": service.speech_to_text_available,
            "objectStorage": service.object_storage_available,
        }
    except Exception:
        logger.exception("Health check failed")
        return web.json_response({"status": "unhealthy", "timestamp": timestamp,
                                  "error": "Health check failed"}, status=500)
    return web.json_response({"status": "healthy", "timestamp": timestamp, "services": services})


async def serve_audio(request: web.Request) -> web.StreamResponse:
    store = request.app[SERVICE_KEY].blob_store
    if not isinstance(store, LocalBlobStore):
        raise NotFound("Audio is not served by this server")
    path = store.path_for(request.match_info["name"])
    if not path.is_file():
        raise NotFound(f"Audio file not found: {path.name}")
    return web.FileResponse(path)


def create_app(service: TranscriptionService) -> web.Application:
    app = web.Application(middlewares=[error_middleware], client_max_size=MAX_UPLOAD_BYTES)
    app[SERVICE_KEY] = service

    async def close_service(app_: web.Application) -> None:
        await app_[SERVICE_KEY].close()

    app.on_cleanup.append(close_service)

    app.router.add_post("/transcribe", transcribe)
    app.router.add_post("/diarize", diarize)
    app.router.add_get("/transcriptions", list_transcriptions)
    # Must be registered before the {id} route
    app.router.add_delete("/transcriptions/clear", clear_transcriptions)
    app.router.add_delete("/transcriptions/{id}", delete_transcription)
    app.router.add_get("/health", health)
    app.router.add_get("/audio/{name}", serve_audio)

    return app


def run_server(service: TranscriptionService, host: str, port: int) -> None:
    """Serve the API until interrupted."""
    logger.info(f"VoiceScribe API listening on http://{host}:{port}")
    web.run_app(create_app(service), host=host, port=port, print=None)
