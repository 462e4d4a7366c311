"""
Progress reporting and timing helpers shared by the batch runner and the
all-phases workflow.
"""

import time
from functools import wraps
from typing import Any, Callable, Optional

from src.utils.logger import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[int, str], None]


class ProgressTracker:
    """Tracks and reports progress as weighted steps complete."""

    PHASE_WEIGHTS = {
        "title": 20,
        "bullets": 40,
        "description": 25,
        "backend": 15,
    }

    def __init__(
        self,
        callback: Optional[ProgressCallback] = None,
        weights: Optional[dict[str, float]] = None,
    ):
        """
        Initialize progress tracker.

        Args:
            callback: Optional callback(progress_percent, message) for progress updates
            weights: Step name -> weight; the weights should sum to 100
        """
        self.callback = callback
        self.weights = dict(weights) if weights is not None else dict(self.PHASE_WEIGHTS)
        self.completed_steps: list[str] = []

    @classmethod
    def for_items(cls, count: int, callback: Optional[ProgressCallback] = None) -> "ProgressTracker":
        """Equal weights for ``count`` sequential items named ``item_1``.."""
        share = 100 / count if count else 0
        return cls(callback, {f"item_{i}": share for i in range(1, count + 1)})

    def mark_complete(self, step: str, message: Optional[str] = None) -> int:
        """Mark a step as complete and return new progress percentage."""
        self.completed_steps.append(step)
        progress = self.get_progress()

        if self.callback:
            try:
                self.callback(progress, message or f"Completed: {step}")
            except Exception as e:
                logger.warning("Progress callback failed", step=step, error=str(e))

        return progress

    def get_progress(self) -> int:
        """Get current progress percentage."""
        return min(100, round(sum(self.weights.get(s, 0) for s in self.completed_steps)))


def track_timing(func: Callable):
    """Log start, duration and failure of an async step."""

    @wraps(func)
    async def wrapper(*args, **kwargs) -> Any:
        start_time = time.time()
        step_name = func.__name__.lstrip("_").replace("_node", "")
        logger.debug("Starting step", step=step_name)
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            logger.error(
                "Step failed",
                step=step_name,
                duration_ms=int((time.time() - start_time) * 1000),
                error=str(e),
            )
            raise
        logger.info("Completed step", step=step_name, duration_ms=int((time.time() - start_time) * 1000))
        return result

    return wrapper


__all__ = ["ProgressCallback", "ProgressTracker", "track_timing"]
