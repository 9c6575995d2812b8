"""Conversion orchestrator: the single-job state machine between the UI and the engine."""
import logging
import uuid
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence, Union

from dropconvert.config import DEFAULT_OUTPUT_FORMAT, VIRTUAL_INPUT_NAME
from dropconvert.conversion.capabilities import find_format, parse_format_listing
from dropconvert.conversion.models import (
    TRANSITIONS,
    ConversionJob,
    DroppedFile,
    EngineState,
    FormatDescriptor,
    JobStatus,
)
from dropconvert.conversion.progress import ProgressTracker
from dropconvert.engine.events import Subscription
from dropconvert.errors import EngineIOError, ExecutionFailure, InvalidTransition, LoadFailure, ValidationFailure

logger = logging.getLogger("dropconvert.orchestrator")

ONLY_ONE_FILE = "Only one file is allowed"
STILL_LOADING = "Engine is still loading"
ALREADY_CONVERTING = "A conversion is already in progress"

# Output format -> content-type for the download
_FORMAT_TO_MIME = {
    "mp4": "video/mp4", "m4v": "video/mp4", "mov": "video/quicktime",
    "webm": "video/webm", "mkv": "video/x-matroska", "matroska": "video/x-matroska",
    "avi": "video/x-msvideo", "flv": "video/x-flv", "ogg": "audio/ogg", "ogv": "video/ogg",
    "mp3": "audio/mpeg", "wav": "audio/wav", "flac": "audio/flac", "opus": "audio/ogg",
    "adts": "audio/aac", "aac": "audio/aac", "gif": "image/gif", "webp": "image/webp",
    "mpegts": "video/mp2t", "ts": "video/mp2t",
}


class Engine(Protocol):
    async def load(self, core_location: str, data_location: Union[str, Path]) -> None: ...
    async def execute(self, argv: Sequence[str]) -> int: ...
    async def list_formats(self) -> list[str]: ...
    def write_file(self, name: str, data: bytes) -> None: ...
    def read_file(self, name: str) -> bytes: ...
    def delete_file(self, name: str) -> None: ...
    def on(self, event: str, callback: Any) -> Subscription: ...
    def close(self) -> None: ...


class ConversionOrchestrator:
    """
    Owns the engine, the discovered formats and the current job.

    Every status change goes through _transition(). Validation problems never
    change state; they set `error` and raise ValidationFailure.
    """

    def __init__(
        self,
        engine: Engine,
        tracker: Optional[ProgressTracker] = None,
        input_name: str = VIRTUAL_INPUT_NAME,
        default_output_format: str = DEFAULT_OUTPUT_FORMAT,
    ):
        self.engine = engine
        self.engine_state = EngineState()
        self.tracker = tracker or ProgressTracker()
        self.input_name = input_name
        self.default_output_format = default_output_format
        self.status = JobStatus.LOADING
        self.error: Optional[str] = None
        self.job: Optional[ConversionJob] = None
        self._formats: tuple[FormatDescriptor, ...] = ()

    @property
    def formats(self) -> tuple[FormatDescriptor, ...]:
        return self._formats

    def _transition(self, target: JobStatus) -> None:
        if target not in TRANSITIONS[self.status]:
            raise InvalidTransition(f"Cannot go from {self.status.value} to {target.value}")
        logger.info("Status %s -> %s", self.status.value, target.value)
        self.status = target
        if self.job is not None and target in (JobStatus.CONVERTING, JobStatus.DONE, JobStatus.FAILED):
            self.job.status = target

    async def start(self, core_location: str, data_location: Union[str, Path]) -> None:
        """Load the engine and discover its formats once. A load failure leaves the machine in Loading."""
        if self.status != JobStatus.LOADING:
            return
        try:
            await self.engine.load(core_location, data_location)
            lines = await self.engine.list_formats()
        except LoadFailure as e:
            self.engine_state.error = e.message
            self.error = e.message
            logger.exception("Engine failed to load: %s", e.message)
            return
        self._formats = parse_format_listing(lines)
        self.engine_state.ready = True
        logger.info(
            "Discovered %s formats (%s demuxable)",
            len(self._formats),
            sum(1 for f in self._formats if f.demuxing_supported),
        )
        self._transition(JobStatus.LOADED)

    def _reject(self, message: str) -> None:
        self.error = message
        logger.warning("Drop rejected: %s", message)
        raise ValidationFailure(message)

    def accept(self, files: Sequence[DroppedFile], output_format: Optional[str] = None) -> Optional[ConversionJob]:
        """Validate a drop and enter Converting. Returns None for an empty drop."""
        if not files:
            return None
        if len(files) > 1:
            self._reject(ONLY_ONE_FILE)
        if self.status == JobStatus.LOADING:
            self._reject(STILL_LOADING)
        if self.status == JobStatus.CONVERTING:
            self._reject(ALREADY_CONVERTING)

        dropped = files[0]
        ext = dropped.extension
        # 'mp4' may be listed both as a muxer and inside the 'mov,mp4,...' demuxer, so filter first
        if find_format([f for f in self._formats if f.demuxing_supported], ext) is None:
            self._reject(f"Unsupported input format: {ext or '(no extension)'}")
        target_name = (output_format or self.default_output_format).strip().lower()
        if find_format([f for f in self._formats if f.muxing_supported], target_name) is None:
            self._reject(f"Unsupported output format: {target_name or '(none)'}")

        self.error = None
        self.tracker.reset()
        self.job = ConversionJob(
            job_id=str(uuid.uuid4()),
            input_name=dropped.name,
            input_bytes=bytes(dropped.data),
            output_format=target_name,
        )
        self._transition(JobStatus.CONVERTING)
        logger.info("Accepted %s (%s bytes) -> %s", dropped.name, len(dropped.data), target_name)
        return self.job

    def _on_progress(self, fraction: float) -> None:
        percent = self.tracker.update(fraction)
        if self.job is not None:
            self.job.progress_percent = percent

    async def run(self, job: ConversionJob) -> ConversionJob:
        """Drive one engine execution for an accepted job and settle it in Done or Failed."""
        if job is not self.job or self.status != JobStatus.CONVERTING:
            raise InvalidTransition(f"Job {job.job_id} is not the converting job")
        argv = ["-i", self.input_name, job.output_name]
        subscription = self.engine.on("progress", self._on_progress)
        try:
            self.engine.write_file(self.input_name, job.input_bytes)
            self.engine.delete_file(job.output_name)
            code = await self.engine.execute(argv)
            if code != 0:
                raise ExecutionFailure(f"Conversion failed (engine exit code {code})", exit_code=code, command=argv)
            data = self.engine.read_file(job.output_name)
            if not data:
                raise ExecutionFailure("Conversion produced an empty file", exit_code=code, command=argv)
        except Exception as e:
            message = getattr(e, "message", None) or str(e) or e.__class__.__name__
            logger.exception("Conversion failed for %s: %s", job.input_name, message)
            job.error_message = message
            job.output_bytes = None
            self.error = message
            self._transition(JobStatus.FAILED)
            return job
        finally:
            subscription.close()
            self._discard(self.input_name)
        job.output_bytes = data
        job.progress_percent = self.tracker.update(1.0)
        self._transition(JobStatus.DONE)
        logger.info("Converted %s -> %s (%s bytes)", job.input_name, job.output_name, len(data))
        return job

    async def drop(self, files: Sequence[DroppedFile], output_format: Optional[str] = None) -> Optional[ConversionJob]:
        """accept() then run(); a rejected drop is reported through `error` and returns None."""
        try:
            job = self.accept(files, output_format)
        except ValidationFailure:
            return None
        if job is None:
            return None
        return await self.run(job)

    def _discard(self, name: str) -> None:
        try:
            self.engine.delete_file(name)
        except EngineIOError as e:
            logger.warning("Could not remove %s from engine filesystem: %s", name, e)

    def output(self) -> Optional[tuple[str, str, bytes]]:
        """(download name, media type, bytes) of the finished job, or None."""
        job = self.job
        if self.status != JobStatus.DONE or job is None or job.output_bytes is None:
            return None
        stem = Path(job.input_name).stem or "output"
        media_type = _FORMAT_TO_MIME.get(job.output_format, "application/octet-stream")
        return f"{stem}.{job.output_format}", media_type, job.output_bytes

    def view(self) -> dict:
        job = self.job
        out = self.output()
        return {
            "status": self.status.value,
            "progress": job.progress_percent if job else 0.0,
            "error": self.error,
            "engine_ready": self.engine_state.ready,
            "filename": job.input_name if job else None,
            "output_format": job.output_format if job else None,
            "output_filename": out[0] if out else None,
            "formats_count": len(self._formats),
        }
