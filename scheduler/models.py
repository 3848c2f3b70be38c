"""
Models for the aggregate reconciliation scheduler.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from utilities.config import LibraryConfig


class SchedulerConfig(BaseModel):
    """Configuration for the reconciliation scheduler."""
    # Scheduling
    schedule_hour: int = Field(default=3, ge=0, le=23, description="Hour to run the daily reconciliation (24h format)")
    schedule_minute: int = Field(default=0, ge=0, le=59, description="Minute to run the daily reconciliation")
    interval_minutes: Optional[int] = Field(default=None, ge=1, description="Run every N minutes instead of daily")
    timezone: str = Field(default="UTC", description="Timezone for scheduling")

    # Work
    enabled: bool = Field(default=True)
    reconcile_ratings: bool = Field(default=True, description="Recompute book and author ratings")
    reconcile_book_counts: bool = Field(default=True, description="Recompute author and publisher book counts")

    @classmethod
    def from_settings(cls, settings: LibraryConfig) -> "SchedulerConfig":
        return cls(
            schedule_hour=settings.reconcile_hour,
            schedule_minute=settings.reconcile_minute,
            interval_minutes=settings.reconcile_interval_minutes,
            timezone=settings.timezone,
            enabled=settings.reconcile_enabled,
        )


class ReconciliationResult(BaseModel):
    """Outcome of one reconciliation run."""
    run_id: str = Field(..., description="Unique run identifier")
    started_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = Field(None)
    success: bool = Field(True)
    corrected: Dict[str, int] = Field(default_factory=dict, description="Corrected documents per aggregate")
    errors: List[str] = Field(default_factory=list)

    @property
    def total_corrected(self) -> int:
        return sum(self.corrected.values())

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()
