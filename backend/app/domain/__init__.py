"""Domain contracts and shared types."""

from backend.app.domain.contracts import (  # noqa: F401
    BurstMetadata,
    DripMetadata,
    LeakAlertView,
    MeterReadingRecord,
    ReconciliationReport,
    ReconciliationSummary,
    TypeBreakdown,
    VolumeMetadata,
)
from backend.app.domain.metering import (  # noqa: F401
    AdvanceCategory,
    AlertStatus,
    LeakTrigger,
    MeterType,
    PushRecipient,
    Severity,
)
