"""API routes for dropping a file, following the conversion and downloading the result."""
import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import Response

from dropconvert.config import MAX_UPLOAD_SIZE_BYTES
from dropconvert.conversion.capabilities import demuxable, muxable
from dropconvert.conversion.models import DroppedFile
from dropconvert.conversion.orchestrator import ConversionOrchestrator
from dropconvert.errors import ValidationFailure

logger = logging.getLogger("dropconvert.api")
router = APIRouter(prefix="/api", tags=["converter"])


def get_orchestrator(request: Request) -> ConversionOrchestrator:
    """The orchestrator is created in the app lifespan and kept on app.state."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(503, "Converter is not initialized")
    return orchestrator


def _safe_filename(name: str) -> str:
    """Safe download name (no path separators or quotes, no empty)."""
    s = "".join(c for c in name if c.isalnum() or c in "._- ").strip() or "output"
    return s[:128]


def _content_disposition(filename: str) -> str:
    """Attachment header; non-latin-1 names use the RFC 5987 form like FileResponse."""
    name = _safe_filename(filename)
    quoted = quote(name)
    if quoted != name:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{name}"'


async def _read_upload(file: UploadFile) -> bytes:
    max_mb = MAX_UPLOAD_SIZE_BYTES // (1024 * 1024)
    chunks = []
    total = 0
    while chunk := await file.read(1024 * 1024):
        total += len(chunk)
        if total > MAX_UPLOAD_SIZE_BYTES:
            raise HTTPException(413, f"File too large (max {max_mb} MB)")
        chunks.append(chunk)
    return b"".join(chunks)


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/limits")
def get_limits():
    """Return upload limits for the client."""
    return {
        "max_files_per_drop": 1,
        "max_upload_size_mb": MAX_UPLOAD_SIZE_BYTES // (1024 * 1024),
        "max_upload_size_bytes": MAX_UPLOAD_SIZE_BYTES,
    }


@router.get("/formats")
def get_formats(orchestrator: ConversionOrchestrator = Depends(get_orchestrator)):
    """Formats discovered from the engine at startup."""
    formats = orchestrator.formats
    return {
        "formats": [
            {
                "abbreviation": f.abbreviation,
                "name": f.name,
                "demuxing_supported": f.demuxing_supported,
                "muxing_supported": f.muxing_supported,
            }
            for f in formats
        ],
        "input": demuxable(formats),
        "output": muxable(formats),
        "default_output": orchestrator.default_output_format,
    }


@router.get("/state")
def get_state(orchestrator: ConversionOrchestrator = Depends(get_orchestrator)):
    """Current status, progress and error for rendering."""
    return orchestrator.view()


@router.post("/drop")
async def drop_files(
    background_tasks: BackgroundTasks,
    files: Optional[list[UploadFile]] = File(None),
    output_format: Optional[str] = Query(None, description="Output format abbreviation, e.g. mp4"),
    orchestrator: ConversionOrchestrator = Depends(get_orchestrator),
):
    """Accept a single dropped file and start converting it in the background."""
    uploads = files or []
    if len(uploads) == 1:
        dropped = [DroppedFile(uploads[0].filename or "", await _read_upload(uploads[0]))]
    else:
        # Rejected on count before any bytes are needed
        dropped = [DroppedFile(f.filename or "", b"") for f in uploads]
    try:
        job = orchestrator.accept(dropped, output_format)
    except ValidationFailure as e:
        raise HTTPException(400, e.message)
    if job is not None:
        background_tasks.add_task(orchestrator.run, job)
    return orchestrator.view()


@router.get("/download")
def download_output(orchestrator: ConversionOrchestrator = Depends(get_orchestrator)):
    """Download the converted file of the finished job."""
    out = orchestrator.output()
    if out is None:
        raise HTTPException(404, "No converted file available")
    filename, media_type, data = out
    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": _content_disposition(filename)},
    )
