"""Pipeline module for the Listing Research & Generation Pipeline."""

from src.pipeline.batch import BatchOrchestrator, BatchOutcome
from src.pipeline.context import build_generation_input, load_analyses
from src.pipeline.jobs import BackgroundJobRunner
from src.pipeline.phases import (
    PHASE_ORDER,
    PHASE_SECTIONS,
    PhaseOutcome,
    PhasedGenerationMachine,
    invalidate_downstream,
)
from src.pipeline.progress import ProgressTracker, track_timing
from src.pipeline.workflow import ListingWorkflow, WorkflowResult

__all__ = [
    "BatchOrchestrator",
    "BatchOutcome",
    "build_generation_input",
    "load_analyses",
    "BackgroundJobRunner",
    "PHASE_ORDER",
    "PHASE_SECTIONS",
    "PhaseOutcome",
    "PhasedGenerationMachine",
    "invalidate_downstream",
    "ProgressTracker",
    "track_timing",
    "ListingWorkflow",
    "WorkflowResult",
]
