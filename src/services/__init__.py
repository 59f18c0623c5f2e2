"""Domain services for rule versions, filings, calculations and submissions."""

from src.services.audit import (
    AuditEmitter,
    AuditEvent,
    AuditQueryService,
    AuditSink,
    DatabaseAuditSink,
    RecordingAuditSink,
)
from src.services.calculations import CalculationService
from src.services.filings import FilingService
from src.services.rule_versions import RuleVersionService
from src.services.submissions import SubmissionService

__all__ = [
    "AuditEmitter",
    "AuditEvent",
    "AuditQueryService",
    "AuditSink",
    "DatabaseAuditSink",
    "RecordingAuditSink",
    "CalculationService",
    "FilingService",
    "RuleVersionService",
    "SubmissionService",
]
