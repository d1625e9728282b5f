"""tagdeploy data models — all Pydantic v2, all frozen (immutable)."""

from tagdeploy.models.release import (
    BuildJob,
    ClusterContext,
    DecodedRef,
    FederatedCredential,
    ImageReference,
    RegistryAuth,
    RolloutRequest,
    RolloutResult,
)
from tagdeploy.models.run import RunContext, Trigger
from tagdeploy.models.states import (
    BRANCH_TRANSITIONS,
    RELEASE_TRANSITIONS,
    BranchState,
    ReleaseState,
    StateTransition,
)

__all__ = [
    # run
    "RunContext",
    "Trigger",
    # release
    "DecodedRef",
    "BuildJob",
    "ImageReference",
    "RegistryAuth",
    "FederatedCredential",
    "ClusterContext",
    "RolloutRequest",
    "RolloutResult",
    # states
    "ReleaseState",
    "BranchState",
    "StateTransition",
    "RELEASE_TRANSITIONS",
    "BRANCH_TRANSITIONS",
]
