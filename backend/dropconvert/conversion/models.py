"""Conversion state models."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class JobStatus(str, Enum):
    LOADING = "loading"
    LOADED = "loaded"
    CONVERTING = "convert.start"
    DONE = "convert.done"
    FAILED = "convert.error"


# status -> statuses reachable from it
TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.LOADING: frozenset({JobStatus.LOADED}),
    JobStatus.LOADED: frozenset({JobStatus.CONVERTING}),
    JobStatus.CONVERTING: frozenset({JobStatus.DONE, JobStatus.FAILED}),
    JobStatus.DONE: frozenset({JobStatus.CONVERTING}),
    JobStatus.FAILED: frozenset({JobStatus.CONVERTING}),
}


@dataclass(frozen=True)
class FormatDescriptor:
    abbreviation: str
    name: str
    demuxing_supported: bool
    muxing_supported: bool

    @property
    def aliases(self) -> tuple[str, ...]:
        """Engine lists some formats as comma-joined names, e.g. 'mov,mp4,m4a'."""
        return tuple(a for a in self.abbreviation.split(",") if a)


@dataclass
class DroppedFile:
    name: str
    data: bytes

    @property
    def extension(self) -> str:
        _, dot, ext = self.name.rpartition(".")
        return ext.lower() if dot and ext else ""


@dataclass
class EngineState:
    ready: bool = False
    error: Optional[str] = None


@dataclass
class ConversionJob:
    """In-memory state of the single current job."""

    job_id: str
    input_name: str
    input_bytes: bytes = field(repr=False)
    output_format: str
    status: JobStatus = JobStatus.CONVERTING
    error_message: Optional[str] = None
    progress_percent: float = 0.0
    output_bytes: Optional[bytes] = field(default=None, repr=False)

    @property
    def output_name(self) -> str:
        """Virtual file name the engine writes to and the orchestrator reads back."""
        return f"output.{self.output_format}"
