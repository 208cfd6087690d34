"""Control-plane public API."""

from mfssia_orchestrator.control_plane.controller import ChallengeFlowController

__all__ = ["ChallengeFlowController"]
