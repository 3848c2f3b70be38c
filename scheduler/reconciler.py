"""
Full recomputation of every stored aggregate.

Trigger-on-write maintenance keeps aggregates current, but a failed
recomputation only gets logged. This pass recomputes everything from source
so such drift never outlives the next run.
"""

from datetime import datetime

import structlog

from catalog.exceptions import AggregationFailure
from catalog.models import TargetKind
from catalog.ratings import AggregateMaintainer
from scheduler.models import ReconciliationResult, SchedulerConfig

logger = structlog.get_logger(__name__)


class AggregateReconciler:
    """Runs every enabled reconciliation step and reports the corrections."""

    def __init__(self, maintainer: AggregateMaintainer, config: SchedulerConfig):
        self.maintainer = maintainer
        self.config = config
        self.logger = logger.bind(component="aggregate_reconciler")

    async def run(self) -> ReconciliationResult:
        """
        Reconcile ratings and book counts.

        A failing step is recorded and the remaining steps still run.
        """
        started_at = datetime.utcnow()
        result = ReconciliationResult(
            run_id=f"reconcile_{started_at.strftime('%Y%m%d_%H%M%S')}",
            started_at=started_at,
        )

        steps = []
        if self.config.reconcile_ratings:
            for kind in TargetKind:
                steps.append((f"{kind.value}_ratings", self.maintainer.reconcile_ratings, kind))
        if self.config.reconcile_book_counts:
            for collection_name in ("authors", "publishers"):
                steps.append((f"{collection_name}_book_counts", self.maintainer.reconcile_books_published, collection_name))

        for name, step, argument in steps:
            try:
                result.corrected[name] = await step(argument)
            except AggregationFailure as e:
                self.logger.error("Reconciliation step failed", step=name, error=e.message)
                result.errors.append(f"{name}: {e.message}")
                result.success = False

        result.finished_at = datetime.utcnow()
        self.logger.info(
            "Reconciliation finished",
            run_id=result.run_id,
            success=result.success,
            corrected=result.corrected,
            duration=result.duration_seconds,
        )
        return result
