"""
All-phases workflow using LangGraph.

Drives one product through title, bullets, description and backend without
a human in between: after each phase the selected variant of every new
section is written as its confirmed text, which is what the next phase
reads. Any phase failure routes to the error node and ends the run.

Graph structure:
    title -> bullets -> description -> backend -> END
      |        |            |            |
      +--------+------------+------------+--> handle_error -> END
"""

import operator
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Optional, TypedDict

from langgraph.graph import END, StateGraph

from src.models.schemas import (
    ErrorType,
    GenerationPhase,
    ListingSection,
    PhaseRequest,
    utc_now,
)
from src.pipeline.phases import PhaseOutcome, PhasedGenerationMachine
from src.pipeline.progress import ProgressCallback, ProgressTracker, track_timing
from src.storage.store import Store
from src.utils.logger import LogContext, get_logger
from src.utils.retry import ErrorHandler, PipelineError

logger = get_logger(__name__)


class WorkflowStatus:
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# Workflow State (TypedDict for LangGraph)
# =============================================================================

class WorkflowStateDict(TypedDict, total=False):
    """
    Graph state for one all-phases run.

    ``errors`` accumulates across nodes via ``operator.add``.
    """
    request: dict
    listing_id: Optional[str]
    current_step: str
    status: str
    error_type: Optional[str]
    errors: Annotated[list[str], operator.add]
    phases_completed: Annotated[list[str], operator.add]
    tokens_used: int
    progress_percent: int
    started_at: str
    completed_at: Optional[str]


@dataclass
class WorkflowResult:
    listing_id: str
    phases_completed: list[str]
    tokens_used: int


# =============================================================================
# Workflow
# =============================================================================

class ListingWorkflow:
    """
    Title to backend in one call.

    Example:
        >>> workflow = ListingWorkflow(machine, store)
        >>> result = await workflow.run(PhaseRequest(phase="title", ...))
        >>> result.phases_completed
        ['title', 'bullets', 'description', 'backend']
    """

    def __init__(
        self,
        machine: PhasedGenerationMachine,
        store: Store,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.machine = machine
        self.store = store
        self.progress_callback = progress_callback
        self.progress = ProgressTracker(progress_callback)
        self._graph = self._build_graph()

    def _build_graph(self):
        graph = StateGraph(WorkflowStateDict)

        graph.add_node("title", self._title_node)
        graph.add_node("bullets", self._bullets_node)
        graph.add_node("description", self._description_node)
        graph.add_node("backend", self._backend_node)
        graph.add_node("handle_error", self._handle_error_node)

        graph.set_entry_point("title")

        graph.add_conditional_edges(
            "title", self._route_after_phase, {"continue": "bullets", "error": "handle_error"}
        )
        graph.add_conditional_edges(
            "bullets", self._route_after_phase, {"continue": "description", "error": "handle_error"}
        )
        graph.add_conditional_edges(
            "description", self._route_after_phase, {"continue": "backend", "error": "handle_error"}
        )
        graph.add_conditional_edges(
            "backend", self._route_after_phase, {"continue": END, "error": "handle_error"}
        )
        graph.add_edge("handle_error", END)

        return graph.compile()

    def _route_after_phase(self, state: WorkflowStateDict) -> Literal["continue", "error"]:
        if state.get("status") == WorkflowStatus.FAILED:
            return "error"
        return "continue"

    # =========================================================================
    # Node Implementations
    # =========================================================================

    @track_timing
    async def _title_node(self, state: WorkflowStateDict) -> dict[str, Any]:
        request = PhaseRequest.model_validate(state["request"])
        return await self._run(GenerationPhase.TITLE.value, self.machine.run_phase(request))

    @track_timing
    async def _bullets_node(self, state: WorkflowStateDict) -> dict[str, Any]:
        return await self._run(GenerationPhase.BULLETS.value, self.machine.run_bullets_phase(state["listing_id"]))

    @track_timing
    async def _description_node(self, state: WorkflowStateDict) -> dict[str, Any]:
        return await self._run(
            GenerationPhase.DESCRIPTION.value, self.machine.run_description_phase(state["listing_id"])
        )

    @track_timing
    async def _backend_node(self, state: WorkflowStateDict) -> dict[str, Any]:
        update = await self._run(GenerationPhase.BACKEND.value, self.machine.run_backend_phase(state["listing_id"]))
        if update.get("status") != WorkflowStatus.FAILED:
            update["status"] = WorkflowStatus.COMPLETED
            update["completed_at"] = utc_now().isoformat()
        return update

    async def _run(self, phase: str, pending) -> dict[str, Any]:
        try:
            outcome: PhaseOutcome = await pending
            await self._confirm_sections(outcome.sections)
        except Exception as e:
            logger.error("Workflow phase failed", phase=phase, error=str(e))
            return {
                "errors": [f"{phase} phase failed: {e}"],
                "error_type": ErrorHandler.categorize_error(e),
                "status": WorkflowStatus.FAILED,
                "current_step": phase,
            }

        return {
            "listing_id": outcome.listing_id,
            "current_step": phase,
            "phases_completed": [phase],
            "tokens_used": outcome.listing.tokens_used,
            "progress_percent": self.progress.mark_complete(phase),
        }

    async def _confirm_sections(self, sections: list[ListingSection]) -> None:
        """Accept the selected variant of each section as its confirmed text."""
        for section in sections:
            text = section.confirmed_text()
            if text.strip():
                await self.store.update_section(section.id, {"final_text": text})

    @track_timing
    async def _handle_error_node(self, state: WorkflowStateDict) -> dict[str, Any]:
        errors = state.get("errors", [])
        logger.warning(
            "Workflow stopped",
            listing_id=state.get("listing_id"),
            step=state.get("current_step"),
            error_count=len(errors),
        )
        return {"status": WorkflowStatus.FAILED, "completed_at": utc_now().isoformat()}

    # =========================================================================
    # Public API
    # =========================================================================

    async def run(self, request: PhaseRequest) -> WorkflowResult:
        """
        Run every phase for the product in ``request``.

        Raises:
            PipelineError: A phase failed; ``details`` carries the listing id
                reached so far and the collected errors
        """
        self.progress = ProgressTracker(self.progress_callback)
        initial_state: WorkflowStateDict = {
            "request": request.model_dump(),
            "listing_id": request.listing_id,
            "current_step": GenerationPhase.TITLE.value,
            "status": WorkflowStatus.RUNNING,
            "error_type": None,
            "errors": [],
            "phases_completed": [],
            "tokens_used": 0,
            "progress_percent": 0,
            "started_at": utc_now().isoformat(),
            "completed_at": None,
        }

        with LogContext(product_name=request.product.product_name):
            logger.info("Starting all-phases workflow")
            final_state = await self._graph.ainvoke(initial_state)

        if final_state.get("status") != WorkflowStatus.COMPLETED:
            errors = final_state.get("errors") or ["Unknown error"]
            raise PipelineError(
                message="; ".join(errors),
                error_type=final_state.get("error_type") or ErrorType.INTERNAL_ERROR.value,
                details={"listing_id": final_state.get("listing_id"), "step": final_state.get("current_step")},
            )

        logger.info(
            "Workflow completed",
            listing_id=final_state["listing_id"],
            tokens_used=final_state.get("tokens_used", 0),
        )
        return WorkflowResult(
            listing_id=final_state["listing_id"],
            phases_completed=list(final_state.get("phases_completed", [])),
            tokens_used=final_state.get("tokens_used", 0),
        )


__all__ = ["WorkflowStatus", "WorkflowStateDict", "WorkflowResult", "ListingWorkflow"]
