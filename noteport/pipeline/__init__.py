"""Import pipeline: stage sequencing and progress events."""

from .orchestrator import ImportOrchestrator, STAGES, fallback_backup_dir
from .progress import ProgressStream

__all__ = ["ImportOrchestrator", "ProgressStream", "STAGES", "fallback_backup_dir"]
