"""Chat relay core: conversation building, streaming, and persistence."""

from .orchestrator import ChatOrchestrator

__all__ = ["ChatOrchestrator"]
