"""tagdeploy: tag-driven release orchestration for container images.

A pushed tag ``<target>[/<target>...]/<version>`` is decoded, every target
image is built and pushed under the version with target-scoped build
cache, a short-lived OIDC-federated credential is minted for the cluster,
and the configured workload is restarted. Pushes to the mainline branch
run tests and a sanity build instead.
"""

__version__ = "0.1.0"
__description__ = "Tag-driven container image release and Kubernetes rollout"

from tagdeploy.core.pipeline import BranchPipeline, ReleasePipeline
from tagdeploy.core.ref_decoder import decode

__all__ = ["ReleasePipeline", "BranchPipeline", "decode", "__version__"]
