from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

FAILURE_FINDING_TITLE = "Audit Process Error"
FAILURE_RECOMMENDATION = "Review agent logs for details. The audit may be incomplete."


class Severity(str, Enum):
    """severity classification"""
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    INFORMATIONAL = "Informational"
    OPTIMIZATION = "Optimization"

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        if isinstance(value, cls):
            return value
        text = str(value or "").strip().lower()
        for member in cls:
            if member.value.lower() == text:
                return member
        if text in ("info", "note"):
            return cls.INFORMATIONAL
        if text in ("gas", "optimisation"):
            return cls.OPTIMIZATION
        raise ValueError(f"Unknown severity: {value!r}")


class ReportFinding(BaseModel):
    """one issue in the final report"""
    title: str = Field(..., min_length=1)
    severity: Severity
    description: str
    recommendation: str
    confirmation: str = "N/A"
    details: Optional[Any] = None

    model_config = ConfigDict(frozen=True, extra="allow")

    @field_validator("severity", mode="before")
    @classmethod
    def _parse_severity(cls, value: Any) -> Severity:
        return Severity.parse(value)

    @field_validator("title", "description", "recommendation", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("confirmation", mode="before")
    @classmethod
    def _default_confirmation(cls, value: Any) -> str:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "N/A"
        return str(value)


class AuditReport(BaseModel):
    """
    Terminal report of an audit session.

    Built from the engine's finalize call (or synthesized on failure) and
    never mutated afterwards.
    """
    score: float = Field(..., ge=0, le=100)
    summary: str
    findings: List[ReportFinding] = Field(default_factory=list)
    tools_used: List[str] = Field(default_factory=list)
    contract_id: Optional[str] = None

    model_config = ConfigDict(frozen=True, extra="allow")

    @field_validator("tools_used", mode="before")
    @classmethod
    def _dedupe_tools(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        seen: List[str] = []
        for tool in value:
            name = str(tool).strip()
            if name and name not in seen:
                seen.append(name)
        return seen

    @classmethod
    def failure(cls, contract_id: Optional[str], reason: str) -> "AuditReport":
        effective_id = contract_id or "Unknown"
        return cls(
            contract_id=effective_id,
            score=0,
            summary=f"Audit failed for {effective_id}: {reason}",
            findings=[ReportFinding(
                title=FAILURE_FINDING_TITLE,
                severity=Severity.CRITICAL,
                description=f"The automated audit process encountered an error: {reason}",
                recommendation=FAILURE_RECOMMENDATION,
                details=f"Error occurred during processing for contract {effective_id}.",
                confirmation="N/A",
            )],
            tools_used=[],
        )

    def count_by_severity(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for finding in self.findings:
            counts[finding.severity.value] = counts.get(finding.severity.value, 0) + 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    def __repr__(self) -> str:
        return f"AuditReport({self.contract_id}, score={self.score}, {len(self.findings)} findings)"


def parse_report(raw: Any, contract_id: Optional[str] = None) -> Tuple[Optional[AuditReport], Optional[str]]:
    """
    Validate a finalize payload.

    Returns (report, None) on success or (None, error message) when the
    payload lacks the minimum shape (score, summary, findings).
    """
    if not isinstance(raw, dict):
        return None, f"Report must be an object, got {type(raw).__name__}"
    missing = [key for key in ("score", "summary", "findings") if key not in raw]
    if missing:
        return None, f"Report missing required field(s): {', '.join(missing)}"

    data = dict(raw)
    if not data.get("contract_id") and contract_id:
        data["contract_id"] = contract_id
    try:
        return AuditReport.model_validate(data), None
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        return None, f"Invalid report: {problems}"
