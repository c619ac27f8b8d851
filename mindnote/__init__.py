"""
mindnote - AI processing orchestration for personal thoughts.

Gates who may process, queues at most one live job per thought, arbitrates
AI-proposed actions by confidence, and keeps every change revertible.
"""

from .orchestrator import ThoughtOrchestrator

try:
    from importlib.metadata import version

    __version__ = version("mindnote")
except Exception:
    __version__ = "0.0.0"

__all__ = ["ThoughtOrchestrator"]
