"""Scheduling system for crontabs stored in git repositories.

This package provides:
- Cron schedule parsing and next-run evaluation
- A supervisor keeping one timer task per crontab entry
- Command dispatching into isolated branch workspaces
- Periodic crontab refresh from the repository's origin
"""

from .cron import (
    HORIZON_YEARS,
    FieldKind,
    RangeSpec,
    ListSpec,
    Schedule,
    Entry,
)

from .parser import (
    CronValidationError,
    PREDEFINED_LABELS,
    MONTH_SUBSTITUTIONS,
    WEEKDAY_SUBSTITUTIONS,
    parse_range_spec,
    parse_list_spec,
    parse_schedule,
    must_parse_schedule,
    parse_entry,
    must_parse_entry,
    parse_crontab,
)

from .supervisor import (
    Clock,
    StopSignal,
    Generation,
    Supervisor,
    SupervisorStats,
)

from .dispatch import (
    CommandDispatcher,
    RunResult,
    RunStatus,
    DispatchStats,
)

from .watcher import CrontabWatcher

from .service import (
    CronyService,
    ServiceConfig,
    ServiceStatus,
)

__all__ = [
    # Cron model
    "HORIZON_YEARS",
    "FieldKind",
    "RangeSpec",
    "ListSpec",
    "Schedule",
    "Entry",

    # Parsing
    "CronValidationError",
    "PREDEFINED_LABELS",
    "MONTH_SUBSTITUTIONS",
    "WEEKDAY_SUBSTITUTIONS",
    "parse_range_spec",
    "parse_list_spec",
    "parse_schedule",
    "must_parse_schedule",
    "parse_entry",
    "must_parse_entry",
    "parse_crontab",

    # Supervision
    "Clock",
    "StopSignal",
    "Generation",
    "Supervisor",
    "SupervisorStats",

    # Dispatching
    "CommandDispatcher",
    "RunResult",
    "RunStatus",
    "DispatchStats",

    # Crontab refresh
    "CrontabWatcher",

    # Service lifecycle
    "CronyService",
    "ServiceConfig",
    "ServiceStatus",
]
