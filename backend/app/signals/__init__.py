from .leak import (
    AlertRequest,
    GUARD_DEFINITIONS,
    ReadingPoint,
    detect_burst,
    detect_drip,
    detect_volume_spike,
    run_leak_guards,
    run_leak_guards_with_summary,
)

__all__ = [
    "AlertRequest",
    "GUARD_DEFINITIONS",
    "ReadingPoint",
    "detect_burst",
    "detect_drip",
    "detect_volume_spike",
    "run_leak_guards",
    "run_leak_guards_with_summary",
]
