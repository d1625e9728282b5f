"""Rollout trigger — issues a restart directive against one workload.

A restart is the same strategic-merge patch ``kubectl rollout restart``
sends: it stamps ``kubectl.kubernetes.io/restartedAt`` on the pod
template, and the cluster performs the rolling replacement on its own.
Success means the API server accepted the patch; this module never waits
for pods to turn over.
"""

from __future__ import annotations

import logging
import ssl
from datetime import datetime, timezone

import httpx

from tagdeploy.errors import RolloutError
from tagdeploy.models.release import ClusterContext, RolloutRequest, RolloutResult

logger = logging.getLogger(__name__)

RESTARTED_AT_ANNOTATION = "kubectl.kubernetes.io/restartedAt"
STRATEGIC_MERGE_PATCH = "application/strategic-merge-patch+json"

# kind -> plural resource under apps/v1
_APPS_V1_RESOURCES: dict[str, str] = {
    "deployment": "deployments",
    "statefulset": "statefulsets",
    "daemonset": "daemonsets",
}
WORKLOAD_KINDS = frozenset(_APPS_V1_RESOURCES)


def restart_patch(restarted_at: str) -> dict:
    """Patch body that triggers a rolling restart."""
    return {
        "spec": {
            "template": {
                "metadata": {
                    "annotations": {RESTARTED_AT_ANNOTATION: restarted_at},
                },
            },
        },
    }


class RolloutTrigger:
    """Sends rollout restarts to the cluster API over HTTPS.

    Parameters
    ----------
    timeout:
        Request timeout in seconds.
    transport:
        Optional httpx transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    def restart(
        self,
        context: ClusterContext,
        workload_kind: str,
        workload_name: str,
    ) -> RolloutResult:
        """Restart ``<workload_kind>/<workload_name>`` in the context's namespace."""
        kind = workload_kind.lower()
        resource = _APPS_V1_RESOURCES.get(kind)
        if resource is None:
            raise RolloutError(
                f"Unsupported workload kind {workload_kind!r}; "
                f"expected one of {sorted(_APPS_V1_RESOURCES)}",
                reason="unsupported_kind",
            )

        request = RolloutRequest(
            workload_kind=kind,
            workload_name=workload_name,
            namespace=context.namespace,
        )
        restarted_at = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        path = (
            f"/apis/apps/v1/namespaces/{context.namespace}/{resource}/{workload_name}"
        )

        logger.info(
            "Restarting %s/%s in namespace %s",
            kind,
            workload_name,
            context.namespace,
        )
        verify: ssl.SSLContext | bool = (
            ssl.create_default_context(cafile=context.ca_file) if context.ca_file else True
        )
        try:
            with httpx.Client(
                base_url=context.cluster_endpoint,
                timeout=self._timeout,
                transport=self._transport,
                verify=verify,
            ) as client:
                response = client.patch(
                    path,
                    json=restart_patch(restarted_at),
                    headers={
                        "Authorization": f"Bearer {context.credential.bearer}",
                        "Content-Type": STRATEGIC_MERGE_PATCH,
                        "Accept": "application/json",
                    },
                )
        except httpx.HTTPError as exc:
            raise RolloutError(
                f"Cluster API unavailable at {context.cluster_endpoint}: {exc}",
                reason="unavailable",
            ) from exc

        status = response.status_code
        if status in (401, 403):
            raise RolloutError(
                f"Cluster rejected the credential for {kind}/{workload_name} (HTTP {status})",
                reason="unauthorized",
                status_code=status,
            )
        if status == 404:
            raise RolloutError(
                f"{kind}/{workload_name} not found in namespace {context.namespace}",
                reason="not_found",
                status_code=status,
            )
        if status >= 500:
            raise RolloutError(
                f"Cluster API unavailable (HTTP {status})",
                reason="unavailable",
                status_code=status,
            )
        if response.is_error:
            raise RolloutError(
                f"Cluster rejected restart of {kind}/{workload_name} (HTTP {status})",
                reason="rejected",
                status_code=status,
            )

        resource_version = ""
        try:
            body = response.json()
            resource_version = str(body.get("metadata", {}).get("resourceVersion", ""))
        except (ValueError, AttributeError):
            logger.debug("Restart acknowledged without a JSON body")

        logger.info("Restart of %s/%s accepted (HTTP %d)", kind, workload_name, status)
        return RolloutResult(
            request=request,
            status_code=status,
            restarted_at=restarted_at,
            resource_version=resource_version,
        )
