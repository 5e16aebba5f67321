from .findings import (
    Severity,
    ReportFinding,
    AuditReport,
    parse_report,
    FAILURE_FINDING_TITLE,
    FAILURE_RECOMMENDATION,
)

__all__ = [
    'Severity',
    'ReportFinding',
    'AuditReport',
    'parse_report',
    'FAILURE_FINDING_TITLE',
    'FAILURE_RECOMMENDATION',
]
