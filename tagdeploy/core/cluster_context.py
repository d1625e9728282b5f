"""Cluster context configurator — local, in-memory kubeconfig construction."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from tagdeploy.models.release import ClusterContext, FederatedCredential

logger = logging.getLogger(__name__)

DEFAULT_USER = "github-actions"


def configure(
    endpoint: str,
    credential: FederatedCredential,
    namespace: str,
    *,
    cluster_name: str | None = None,
    user: str = DEFAULT_USER,
    ca_file: Path | None = None,
) -> ClusterContext:
    """Build the single cluster/user/context triple for this run.

    No network call. Any previously configured contexts are ignored;
    the returned context is the only one and is current.
    """
    if not endpoint:
        raise ValueError("cluster endpoint must not be empty")
    if not namespace:
        raise ValueError("namespace must not be empty")

    name = cluster_name or endpoint.removeprefix("https://").rstrip("/")
    context = ClusterContext(
        cluster_name=name,
        cluster_endpoint=endpoint.rstrip("/"),
        user=user,
        credential=credential,
        namespace=namespace,
        ca_file=str(ca_file) if ca_file else None,
    )
    logger.info(
        "Configured context %s (cluster=%s user=%s namespace=%s)",
        context.context_name,
        context.cluster_endpoint,
        user,
        namespace,
    )
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("kubeconfig: %s", json.dumps(context.kubeconfig(redact=True)))
    return context
