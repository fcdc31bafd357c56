"""Selection & Restore Driver.

Picks one snapshot uniformly from the final ledger, restores from it and
confirms the managed resources are back.  Restorability is expected to hold
for any ledger entry, so the choice is random; the random source is injected
so tests can seed it.
"""

from __future__ import annotations

import random

import structlog

from cadence.config import CadenceSettings
from cadence.errors import RestoreVerificationError
from cadence.models import Ledger, ResourceLookup, RestoreOutcome, SnapshotRecord, TestRun
from cadence.platform import ResourcePlatform, SnapshotPlatform

log = structlog.get_logger()

RESTORE_COMPLETED = "Completed"


def select_snapshot(ledger: Ledger, rng: random.Random) -> SnapshotRecord:
    """Return one record of *ledger* chosen uniformly at random."""
    if not ledger.records:
        raise RestoreVerificationError(
            "select_snapshot",
            "ledger is empty, nothing to restore from",
            expected=">= 1 snapshot",
            observed=0,
        )
    return rng.choice(ledger.records)


def normalize_identifier(identifier: str) -> str:
    """Drop incidental whitespace from a ledger identifier."""
    return "".join(identifier.split())


class RestoreDriver:
    """Drives restore-and-wait and the post-restore presence check."""

    def __init__(
        self,
        snapshots: SnapshotPlatform,
        resources: ResourcePlatform,
        settings: CadenceSettings,
    ) -> None:
        self.snapshots = snapshots
        self.resources = resources
        self.settings = settings

    async def restore(self, run: TestRun, snapshot: SnapshotRecord) -> RestoreOutcome:
        snapshot_id = normalize_identifier(snapshot.identifier)
        log.info("restore_start", restore=run.restore_name, snapshot=snapshot_id)
        await self.snapshots.create_restore(run.restore_name, snapshot_id)
        phase = await self.snapshots.get_restore_phase(run.restore_name)
        outcome = RestoreOutcome(
            restore_name=run.restore_name,
            snapshot_id=snapshot_id,
            succeeded=phase == RESTORE_COMPLETED,
            phase=phase,
        )
        if not outcome.succeeded:
            raise RestoreVerificationError(
                "restore_phase",
                f"restore {run.restore_name} did not complete",
                expected=RESTORE_COMPLETED,
                observed=phase,
                snapshot=snapshot_id,
            )
        return outcome

    async def verify(self, run: TestRun, outcome: RestoreOutcome) -> list[ResourceLookup]:
        """Check that each namespace has its managed resource again.

        In ``exists`` mode a lookup without error is enough; in ``content``
        mode the restored data must also equal what was created.
        """
        lookups: list[ResourceLookup] = []
        for ns in run.namespaces:
            lookup = await self.resources.get_config_map(ns, run.resource_name)
            lookups.append(lookup)
            outcome.lookups.append(lookup)
            log.info(
                "restored_resource",
                namespace=ns,
                name=run.resource_name,
                exists=lookup.exists,
                error=lookup.error,
            )

        missing = [lk.namespace for lk in lookups if not lk.exists or lk.error]
        if missing:
            raise RestoreVerificationError(
                "namespaces_restored",
                "managed resource missing after restore",
                expected=list(run.namespaces),
                observed=[lk.namespace for lk in lookups if lk.exists and not lk.error],
                missing=missing,
                errors={lk.namespace: lk.error for lk in lookups if lk.error},
            )

        if self.settings.restore_check == "content":
            changed = [lk.namespace for lk in lookups if lk.data != run.resource_data]
            if changed:
                raise RestoreVerificationError(
                    "restored_content",
                    "restored resource data differs from the original",
                    expected=run.resource_data,
                    observed={lk.namespace: lk.data for lk in lookups if lk.namespace in changed},
                )
        return lookups
