"""
Error taxonomy for the creative session orchestrator.

ValidationError       — precondition failed; raised before any network call or mutation.
SessionNotFound       — no session with that id.
ConfirmationRequired  — the edit would discard later-step work; held as a pending edit.
DispatchFailure       — provider rejected or failed a job submission; scene state rolled back.
JobFailed             — provider reported terminal failure for one job.
PollError             — transient failure fetching job or progress status; never escalated.
StitchFailed          — terminal failure of the final assembly.
"""


class OrchestratorError(Exception):
    """Base class for orchestrator errors."""


class ValidationError(OrchestratorError, ValueError):
    pass


class SessionNotFound(OrchestratorError, LookupError):
    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class ConfirmationRequired(OrchestratorError):
    def __init__(self, pending_edit_id: str, target_step: int, furthest_step: int):
        super().__init__(
            f"Editing step {target_step} will reset progress made up to step {furthest_step}"
        )
        self.pending_edit_id = pending_edit_id
        self.target_step = target_step
        self.furthest_step = furthest_step


class DispatchFailure(OrchestratorError, RuntimeError):
    pass


class JobFailed(OrchestratorError, RuntimeError):
    pass


class PollError(OrchestratorError, RuntimeError):
    pass


class StitchFailed(OrchestratorError, RuntimeError):
    pass
