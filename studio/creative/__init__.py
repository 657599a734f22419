"""
Creative Session Orchestrator

Guides a user from a product to a finished short-form video ad:
  Step Gate        — linear steps, confirmation before discarding later work
  Media Registry   — versioned image/video variants per scene
  Dispatcher       — optimistic scene image/video job submission
  Reconciler       — background polling that folds job results into scenes
  Assembly         — stitches included scene videos with transitions
"""

from .session_service import SessionService, get_session_service
from .routes import router
from .models import Session, Scene, Step, SessionStatus, JobStatus

__all__ = [
    "SessionService",
    "get_session_service",
    "router",
    "Session",
    "Scene",
    "Step",
    "SessionStatus",
    "JobStatus",
]
