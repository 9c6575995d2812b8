from .orchestrator import ConversionOrchestrator
from .models import ConversionJob, DroppedFile, FormatDescriptor, JobStatus
from .progress import ProgressTracker

__all__ = ["ConversionOrchestrator", "ConversionJob", "DroppedFile", "FormatDescriptor", "JobStatus", "ProgressTracker"]
