"""tests for the audit report models"""

import os
import sys
import unittest
from pathlib import Path

from pydantic import ValidationError

PROJECT_ROOT = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(PROJECT_ROOT / "src"))
os.environ.setdefault("HCS_AUDIT_SKIP_VALIDATION", "1")

from models.findings import (  # noqa: E402
    AuditReport,
    FAILURE_FINDING_TITLE,
    ReportFinding,
    Severity,
    parse_report,
)
from tests.fakes import VALID_REPORT  # noqa: E402


class TestSeverity(unittest.TestCase):

    def test_parse_is_case_insensitive(self):
        self.assertEqual(Severity.parse("high"), Severity.HIGH)
        self.assertEqual(Severity.parse(" CRITICAL "), Severity.CRITICAL)
        self.assertEqual(Severity.parse("info"), Severity.INFORMATIONAL)
        self.assertEqual(Severity.parse("gas"), Severity.OPTIMIZATION)

    def test_unknown_severity(self):
        with self.assertRaises(ValueError):
            Severity.parse("catastrophic")


class TestReportFinding(unittest.TestCase):

    def test_confirmation_defaults(self):
        finding = ReportFinding(title="t", severity="low", description="d", recommendation="r", confirmation="")
        self.assertEqual(finding.confirmation, "N/A")

    def test_title_required(self):
        with self.assertRaises(ValidationError):
            ReportFinding(title="  ", severity="low", description="d", recommendation="r")


class TestAuditReport(unittest.TestCase):

    def test_valid_report(self):
        report = AuditReport.model_validate(VALID_REPORT)
        self.assertEqual(report.score, 62)
        self.assertEqual(report.tools_used, ["slither", "forge test"])
        self.assertEqual(report.findings[0].severity, Severity.HIGH)
        self.assertEqual(report.count_by_severity(), {"High": 1})

    def test_score_bounds(self):
        for score in (-1, 101):
            with self.subTest(score=score):
                with self.assertRaises(ValidationError):
                    AuditReport.model_validate(dict(VALID_REPORT, score=score))

    def test_report_is_immutable(self):
        report = AuditReport.model_validate(VALID_REPORT)
        with self.assertRaises(ValidationError):
            report.score = 10

    def test_failure_report(self):
        report = AuditReport.failure(None, "AI response was empty.")
        self.assertEqual(report.contract_id, "Unknown")
        self.assertEqual(report.score, 0)
        self.assertEqual(report.tools_used, [])
        [finding] = report.findings
        self.assertEqual(finding.title, FAILURE_FINDING_TITLE)
        self.assertEqual(finding.severity, Severity.CRITICAL)
        self.assertIn("AI response was empty.", finding.description)

    def test_to_dict_uses_plain_values(self):
        data = AuditReport.model_validate(VALID_REPORT).to_dict()
        self.assertEqual(data["findings"][0]["severity"], "High")
        self.assertNotIn("contract_id", data)


class TestParseReport(unittest.TestCase):

    def test_fills_contract_id(self):
        report, error = parse_report(VALID_REPORT, "0.0.42")
        self.assertIsNone(error)
        self.assertEqual(report.contract_id, "0.0.42")

    def test_report_contract_id_wins(self):
        report, _ = parse_report(dict(VALID_REPORT, contract_id="0.0.7"), "0.0.42")
        self.assertEqual(report.contract_id, "0.0.7")

    def test_missing_fields(self):
        report, error = parse_report({"score": 10}, "0.0.42")
        self.assertIsNone(report)
        self.assertEqual(error, "Report missing required field(s): summary, findings")

    def test_not_an_object(self):
        _, error = parse_report(["score"], "0.0.42")
        self.assertEqual(error, "Report must be an object, got list")

    def test_validation_errors_are_flattened(self):
        _, error = parse_report(dict(VALID_REPORT, score="lots"), "0.0.42")
        self.assertTrue(error.startswith("Invalid report: score:"))


if __name__ == "__main__":
    unittest.main()
