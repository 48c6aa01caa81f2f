"""API routes for upload, conversion, download and archive delivery."""
import asyncio
import logging
import mimetypes
import os
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path

from fastapi import APIRouter, Body, Depends, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import FileResponse, StreamingResponse
from starlette.background import BackgroundTask

from converter import config
from converter.conversion.aggregate import summarize
from converter.conversion.models import MediaCategory, UploadedFile
from converter.conversion.service import get_conversion_service
from converter.db import get_session_activities, get_session_stats, record_results
from converter.errors import ArchiveError, ArtifactNotFound, ContentValidationError, InputError
from converter.options import build_options
from converter.security import allowed_extensions, generate_secure_filename, parse_options_json, validate_extension

logger = logging.getLogger("converter.api")
router = APIRouter(prefix="/api", tags=["converter"])

CHUNK_SIZE = 1024 * 1024


def get_or_create_session_id(request: Request) -> str:
    """Use X-Session-ID header or generate and attach to request for response header."""
    sid = (request.headers.get("X-Session-ID") or "").strip()
    if sid:
        return sid
    sid = str(uuid.uuid4())
    request.state.session_id = sid
    return sid


def _input_error(e: InputError) -> HTTPException:
    detail = {"error": str(e)}
    if e.errors:
        detail["errors"] = e.errors
    return HTTPException(400, detail)


def _remove_staged(paths: list[Path]) -> None:
    for p in paths:
        p.unlink(missing_ok=True)


async def _stage_upload(file: UploadFile) -> UploadedFile:
    """Stream one upload into the staging area under a generated name."""
    max_bytes = config.MAX_FILE_SIZE_BYTES
    dest = config.UPLOAD_DIR / generate_secure_filename(file.filename or "upload")
    total = 0
    try:
        with open(dest, "wb") as f:
            while chunk := await file.read(CHUNK_SIZE):
                total += len(chunk)
                if total > max_bytes:
                    raise HTTPException(413, f"File too large: {file.filename} (max {config.MAX_FILE_SIZE_MB} MB)")
                f.write(chunk)
    except HTTPException:
        dest.unlink(missing_ok=True)
        raise
    except Exception as e:
        logger.exception("Upload failed for %s: %s", file.filename, e)
        dest.unlink(missing_ok=True)
        raise HTTPException(500, "Upload failed")
    return UploadedFile(filename=file.filename or dest.name, path=dest, size=total)


@router.get("/health")
def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/limits")
def get_limits():
    """Return upload limits for the client."""
    return {
        "max_files_per_batch": config.MAX_FILES_PER_BATCH,
        "max_file_size_mb": config.MAX_FILE_SIZE_MB,
        "max_file_size_bytes": config.MAX_FILE_SIZE_BYTES,
        "artifact_ttl_seconds": config.ARTIFACT_TTL_SECONDS,
    }


@router.get("/formats")
def get_formats():
    return {
        "image": sorted(allowed_extensions("image")),
        "video": sorted(allowed_extensions("video")),
        "output_image": config.IMAGE_OUTPUT_FORMATS,
        "output_video": config.VIDEO_OUTPUT_FORMATS,
        "video_presets": config.VIDEO_PRESETS,
    }


@router.post("/process/images")
async def process_images(
    files: list[UploadFile] = File(...),
    options: str = Form("{}"),
    session_id: str = Depends(get_or_create_session_id),
):
    """Convert a batch of images. Per-file failures are reported in the results, not as an HTTP error."""
    if not files:
        raise HTTPException(400, "No files uploaded")
    if len(files) > config.MAX_FILES_PER_BATCH:
        raise HTTPException(400, f"Max {config.MAX_FILES_PER_BATCH} files per upload")
    try:
        opts = build_options(parse_options_json(options), MediaCategory.IMAGE.value)
        for file in files:
            check = validate_extension(file.filename or "", MediaCategory.IMAGE.value)
            if not check.valid:
                raise InputError(f"{file.filename}: {check.error}")
    except InputError as e:
        raise _input_error(e)

    staged: list[UploadedFile] = []
    try:
        for file in files:
            staged.append(await _stage_upload(file))
    except HTTPException:
        _remove_staged([s.path for s in staged])
        raise

    svc = get_conversion_service()
    started = time.monotonic()
    try:
        results = await asyncio.to_thread(svc.process_batch, staged, opts)
    except InputError as e:
        _remove_staged([s.path for s in staged])
        raise _input_error(e)
    except Exception as e:
        _remove_staged([s.path for s in staged])
        logger.exception("Image processing failed: %s", e)
        raise HTTPException(500, {"error": "Image processing failed", "message": str(e)})

    record_results(session_id, results, MediaCategory.IMAGE.value, time.monotonic() - started)
    return {
        "success": True,
        "results": [r.to_dict() for r in results],
        "summary": summarize(results).to_dict(),
    }


@router.post("/process/video")
async def process_video(
    file: UploadFile = File(...),
    options: str = Form("{}"),
    session_id: str = Depends(get_or_create_session_id),
):
    """Convert one video into the single configured container."""
    try:
        opts = build_options(parse_options_json(options), MediaCategory.VIDEO.value)
        check = validate_extension(file.filename or "", MediaCategory.VIDEO.value)
        if not check.valid:
            raise InputError(check.error)
    except InputError as e:
        raise _input_error(e)

    staged = await _stage_upload(file)
    svc = get_conversion_service()
    started = time.monotonic()
    try:
        result = await asyncio.to_thread(svc.process_single, staged, opts)
    except ContentValidationError as e:
        raise _input_error(e)
    except Exception as e:
        staged.path.unlink(missing_ok=True)
        logger.exception("Video processing failed: %s", e)
        raise HTTPException(500, {"error": "Video processing failed", "message": str(e)})

    record_results(session_id, [result], MediaCategory.VIDEO.value, time.monotonic() - started)
    if not result.ok:
        raise HTTPException(500, {"error": "Video processing failed", "message": result.error})
    return {"success": True, "result": result.to_dict()}


@router.get("/process/download/{filename}")
def download_artifact(filename: str):
    """Download a stored artifact. Gone after the retention window."""
    svc = get_conversion_service()
    try:
        path = svc.store.resolve(filename)
        # The open handle outlives a reaper sweep that runs mid-download
        fh = path.open("rb")
    except InputError as e:
        raise HTTPException(400, str(e))
    except (ArtifactNotFound, FileNotFoundError):
        raise HTTPException(404, "File not found")
    media_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
    return StreamingResponse(
        iter(lambda: fh.read(CHUNK_SIZE), b""),
        media_type=media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Content-Length": str(os.fstat(fh.fileno()).st_size),
        },
        background=BackgroundTask(fh.close),
    )


@router.post("/process/archive")
def download_archive(files: list[str] = Body(..., embed=True)):
    """Zip the named artifacts and stream the container; it is deleted once sent."""
    if not files:
        raise HTTPException(400, "No files provided")
    svc = get_conversion_service()
    try:
        archive_path = svc.build_archive(files)
    except ArchiveError as e:
        raise HTTPException(400, {"error": "Archive creation failed", "message": str(e)})
    return FileResponse(
        archive_path,
        media_type="application/zip",
        filename="processed-files.zip",
        background=BackgroundTask(archive_path.unlink, missing_ok=True),
    )


@router.get("/session/stats")
def session_stats(session_id: str = Depends(get_or_create_session_id)):
    """Return aggregated stats for the current session."""
    return get_session_stats(session_id)


@router.get("/session/activities")
def session_activities(
    limit: int = Query(50, ge=1, le=200),
    session_id: str = Depends(get_or_create_session_id),
):
    """Return recent conversion activities for the current session."""
    return {"activities": get_session_activities(session_id, limit=limit)}
