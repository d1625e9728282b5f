"""Pipeline state models — deterministic transitions for both pipelines."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ReleaseState(str, Enum):
    """States of the tag-driven release pipeline."""

    IDLE = "idle"
    DECODING = "decoding"
    BUILDING = "building"
    CREDENTIAL_PENDING = "credential_pending"
    DEPLOYING = "deploying"
    DONE = "done"
    FAILED = "failed"


class BranchState(str, Enum):
    """States of the branch-push (test + sanity build) pipeline."""

    IDLE = "idle"
    TESTING_AND_BUILDING = "testing_and_building"
    DONE = "done"
    FAILED = "failed"


# Strictly sequential; FAILED is reachable from every non-terminal state.
RELEASE_TRANSITIONS: dict[ReleaseState, set[ReleaseState]] = {
    ReleaseState.IDLE: {ReleaseState.DECODING, ReleaseState.FAILED},
    ReleaseState.DECODING: {ReleaseState.BUILDING, ReleaseState.FAILED},
    ReleaseState.BUILDING: {ReleaseState.CREDENTIAL_PENDING, ReleaseState.FAILED},
    ReleaseState.CREDENTIAL_PENDING: {ReleaseState.DEPLOYING, ReleaseState.FAILED},
    ReleaseState.DEPLOYING: {ReleaseState.DONE, ReleaseState.FAILED},
    ReleaseState.DONE: set(),  # terminal
    ReleaseState.FAILED: set(),  # terminal
}

BRANCH_TRANSITIONS: dict[BranchState, set[BranchState]] = {
    BranchState.IDLE: {BranchState.TESTING_AND_BUILDING, BranchState.FAILED},
    BranchState.TESTING_AND_BUILDING: {BranchState.DONE, BranchState.FAILED},
    BranchState.DONE: set(),
    BranchState.FAILED: set(),
}


class StateTransition(BaseModel):
    """Records a single state transition for the run's audit trail."""

    model_config = ConfigDict(frozen=True)

    from_state: str
    to_state: str
    detail: str = ""
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
