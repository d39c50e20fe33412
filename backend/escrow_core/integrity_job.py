"""
ESCROW INTEGRITY JOB

Background job that verifies every project's escrow_held matches its ledger.

For each project known to the balance store:
1. Sum credit and debit ledger entries
2. Compare with the stored escrow_held
3. Log mismatches (NO auto-fix)

Usage:
    job = EscrowIntegrityJob(ledger)
    report = await job.run()
"""

from datetime import datetime
from typing import Any, Dict, List
import logging

from escrow_core.errors import NotFoundError
from escrow_core.ledger import EscrowLedger

logger = logging.getLogger(__name__)


class EscrowIntegrityJob:
    """
    Compares the cached escrow balance against the append-only ledger.

    Reports mismatches but does NOT auto-fix.
    """

    def __init__(self, ledger: EscrowLedger):
        self.ledger = ledger
        self.mismatches: List[Dict[str, Any]] = []
        self.checked_count = 0
        self.mismatch_count = 0

    async def run(self) -> Dict[str, Any]:
        start_time = datetime.utcnow()
        self.mismatches = []
        self.checked_count = 0
        self.mismatch_count = 0

        logger.info("[INTEGRITY_JOB] Starting escrow integrity check...")

        project_ids = await self.ledger.balance_store.list_project_ids()
        for project_id in project_ids:
            await self._check_project(project_id)

        end_time = datetime.utcnow()
        duration_ms = (end_time - start_time).total_seconds() * 1000

        report = {
            "job_name": "EscrowIntegrityJob",
            "status": "completed",
            "started_at": start_time.isoformat(),
            "completed_at": end_time.isoformat(),
            "duration_ms": round(duration_ms, 2),
            "projects_checked": self.checked_count,
            "mismatches_found": self.mismatch_count,
            "mismatches": self.mismatches
        }

        if self.mismatch_count > 0:
            logger.warning(
                f"[INTEGRITY_JOB] Completed with {self.mismatch_count} mismatches "
                f"out of {self.checked_count} projects"
            )
        else:
            logger.info(
                f"[INTEGRITY_JOB] Completed successfully. "
                f"All {self.checked_count} projects verified."
            )

        return report

    async def _check_project(self, project_id: str):
        try:
            report = await self.ledger.reconcile_project(project_id)
        except NotFoundError:
            # Project removed between listing and reading
            logger.info(f"[INTEGRITY_JOB] Skipping vanished project {project_id}")
            return

        self.checked_count += 1
        if report.consistent:
            return

        self.mismatch_count += 1
        self.mismatches.append({
            "project_id": project_id,
            "checked_at": report.checked_at.isoformat(),
            "escrow_held": float(report.escrow_held),
            "ledger_balance": float(report.ledger_balance),
            "difference": float(report.difference),
            "entry_count": report.entry_count,
        })
        logger.warning(
            f"[INTEGRITY_JOB] MISMATCH found: project={project_id}, "
            f"stored={report.escrow_held}, calculated={report.ledger_balance}"
        )


async def run_integrity_check(ledger: EscrowLedger) -> Dict[str, Any]:
    """
    Convenience function to run the integrity check.

    Usage:
        from escrow_core.integrity_job import run_integrity_check
        report = await run_integrity_check(ledger)
    """
    job = EscrowIntegrityJob(ledger)
    return await job.run()
