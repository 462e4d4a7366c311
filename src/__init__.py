"""
Listing Research & Generation Pipeline.

Aggregates marketplace research (reviews, Q&A, keyword and competitor
analyses) and generates Amazon listings with Claude in confirmable phases,
orchestrated with LangGraph.
"""

__version__ = "1.0.0"
__author__ = "Listing Pipeline Team"

# Lazy imports to avoid circular dependencies
def get_machine():
    """Get the PhasedGenerationMachine class (lazy import)."""
    from src.pipeline.phases import PhasedGenerationMachine
    return PhasedGenerationMachine

__all__ = ["get_machine", "__version__"]
