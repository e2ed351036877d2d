"""Domain model package exports."""

from .catalog import (Domain, Hosting, LicenseInfo, LicenseType, Model,
                      PricingEntry, SourceStat, is_incomplete, missing_fields,
                      pricing_from_dict)
from .validation import (TERMINAL_STATUSES, JobStatus, ProgressEvent,
                         ValidationJob, ValidationSource, new_job_id)

__all__ = [
    "Domain",
    "Hosting",
    "JobStatus",
    "LicenseInfo",
    "LicenseType",
    "Model",
    "PricingEntry",
    "ProgressEvent",
    "SourceStat",
    "TERMINAL_STATUSES",
    "ValidationJob",
    "ValidationSource",
    "is_incomplete",
    "missing_fields",
    "new_job_id",
    "pricing_from_dict",
]
