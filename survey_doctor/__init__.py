"""Validation and auto-repair for pavement survey uploads."""

__version__ = "0.1.0"

from survey_doctor.pipeline import (  # noqa: E402
    PipelineState,
    ValidationReport,
    apply_fixes,
    parse,
    suggest_fixes,
    validate,
)
from survey_doctor.schemas import profile  # noqa: E402
from survey_doctor.session import ReconciliationSession  # noqa: E402

__all__ = [
    "__version__",
    "PipelineState",
    "ReconciliationSession",
    "ValidationReport",
    "apply_fixes",
    "parse",
    "profile",
    "suggest_fixes",
    "validate",
]
