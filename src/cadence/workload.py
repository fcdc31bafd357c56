"""Managed workload: the resources the schedule snapshots and restores.

One ConfigMap per target namespace.  ``create`` waits until each resource is
readable; ``teardown`` deletes the namespaces and polls until they are gone.
"""

from __future__ import annotations

import structlog

from cadence.clock import Timer
from cadence.config import CadenceSettings
from cadence.errors import VerificationError
from cadence.models import TestRun
from cadence.platform import ResourcePlatform

log = structlog.get_logger()


class Workload:
    """Creates and removes the managed resources of a run."""

    def __init__(
        self,
        resources: ResourcePlatform,
        timer: Timer,
        settings: CadenceSettings,
    ) -> None:
        self.resources = resources
        self.timer = timer
        self.settings = settings

    async def create(self, run: TestRun) -> None:
        for ns in run.namespaces:
            log.info("creating_namespace", namespace=ns)
            await self.resources.create_namespace(ns)
            log.info("creating_configmap", namespace=ns, name=run.resource_name)
            await self.resources.create_config_map(ns, run.resource_name, run.resource_data)
            await self._wait_for_config_map(ns, run.resource_name)

    async def _wait_for_config_map(self, namespace: str, name: str) -> None:
        lookup = None
        for _ in range(self.settings.resource_poll_attempts):
            lookup = await self.resources.get_config_map(namespace, name)
            if lookup.exists:
                return
            await self.timer.wait(self.settings.resource_poll_seconds, "wait_for_configmap")
        raise VerificationError(
            "configmap_ready",
            f"configmap {name} never became readable in namespace {namespace}",
            expected="exists",
            observed=lookup.error if lookup else None,
        )

    async def teardown(self, run: TestRun) -> None:
        for ns in run.namespaces:
            log.info("deleting_namespace", namespace=ns)
            await self.resources.delete_namespace(ns)

        pending = list(run.namespaces)
        for _ in range(self.settings.resource_poll_attempts):
            pending = [ns for ns in pending if await self.resources.namespace_exists(ns)]
            if not pending:
                log.info("namespaces_deleted", namespaces=list(run.namespaces))
                return
            await self.timer.wait(self.settings.resource_poll_seconds, "wait_for_namespace_deletion")
        raise VerificationError(
            "namespace_cleanup",
            "namespaces still present after deletion",
            expected=[],
            observed=pending,
        )
