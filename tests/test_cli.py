from __future__ import annotations

import json
import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
CLI = [sys.executable, "-m", "survey_doctor.cli"]
FIXED_STAMP = "20260301T010203Z"


def run_cli(*args: str, env: dict[str, str] | None = None) -> subprocess.CompletedProcess[str]:
    merged_env = dict(os.environ)
    merged_env["SURVEY_DOCTOR_OUTPUT_STAMP"] = FIXED_STAMP
    merged_env["SURVEY_DOCTOR_CURRENT_YEAR"] = "2025"
    if env:
        merged_env.update(env)
    return subprocess.run(
        [*CLI, *args],
        cwd=ROOT,
        capture_output=True,
        text=True,
        env=merged_env,
    )


class SurveyDoctorCliTests(unittest.TestCase):
    def test_validate_messy_upload_returns_exit_3(self):
        proc = run_cli("validate", "sample-data/messy_deflection.csv", "--profile", "deflection")
        self.assertEqual(proc.returncode, 3, proc.stderr)
        self.assertIn("header_invalid_format", proc.stderr)
        self.assertIn("Wintr_22", proc.stderr)

    def test_validate_clean_upload_returns_exit_0(self):
        proc = run_cli("validate", "sample-data/clean_deflection.csv", "--profile", "deflection", "--json")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        payload = json.loads(proc.stdout)
        self.assertTrue(payload["report"]["is_valid"])
        self.assertEqual(payload["contract"]["name"], "survey_doctor.validate")
        self.assertEqual(payload["run_summary"]["generated_at"], "1970-01-01T00:00:00Z")
        self.assertEqual(proc.stderr.strip(), "")

    def test_validate_writes_report_when_asked(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            proc = run_cli("validate", "sample-data/messy_lte_crack.csv", "--profile", "lte_crack", "--out", tmpdir)
            self.assertEqual(proc.returncode, 3, proc.stderr)
            report = json.loads((Path(tmpdir) / "validation.json").read_text())
            self.assertFalse(report["report"]["is_valid"])

    def test_unknown_profile_is_a_command_error(self):
        proc = run_cli("validate", "sample-data/clean_deflection.csv", "--profile", "pavement")
        self.assertEqual(proc.returncode, 1)

    def test_missing_file_is_a_command_error(self):
        proc = run_cli("validate", "sample-data/nope.csv", "--profile", "deflection")
        self.assertEqual(proc.returncode, 1)
        self.assertIn("File not found", proc.stderr)

    def test_unreadable_workbook_returns_exit_2(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "corrupt.xlsx"
            path.write_bytes(b"not a workbook")
            proc = run_cli("validate", str(path), "--profile", "deflection")
            self.assertEqual(proc.returncode, 2)
            self.assertIn("Could not read workbook", proc.stderr)

    def test_suggest_writes_decisions_and_apply_uses_them(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            proc = run_cli("suggest", "sample-data/messy_deflection.csv", "--profile", "deflection", "--out", tmpdir)
            self.assertEqual(proc.returncode, 3, proc.stderr)
            decisions_path = Path(tmpdir) / "decisions.json"
            decisions = json.loads(decisions_path.read_text())
            self.assertEqual(decisions["overrides"]["Wintr_22"], "Winter_2022")
            self.assertEqual(decisions["corrections"], {"130": "150"})

            proc = run_cli(
                "apply",
                "sample-data/messy_deflection.csv",
                "--profile",
                "deflection",
                "--decisions",
                str(decisions_path),
                "--out",
                tmpdir,
            )
            self.assertEqual(proc.returncode, 0, proc.stderr)
            clean = (Path(tmpdir) / "messy_deflection-clean.csv").read_text().splitlines()
            self.assertEqual(clean[0], "DMI,Winter_2022,Summer_2022,Winter_2023")
            self.assertEqual(len(clean), 4)
            summary = json.loads((Path(tmpdir) / "apply-summary.json").read_text())
            self.assertEqual(summary["contract"]["name"], "survey_doctor.apply_summary")
            self.assertEqual(summary["run_summary"]["metrics"]["rows_out"], 3)
            self.assertEqual(summary["run_summary"]["rows_in"], 4)
            self.assertEqual(summary["run_summary"]["status"], "applied")
            self.assertEqual(summary["run_summary"]["current_year"], 2025)

    def test_apply_without_resolution_returns_exit_5(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            proc = run_cli("apply", "sample-data/unresolvable_deflection.csv", "--profile", "deflection", "--out", tmpdir)
            self.assertEqual(proc.returncode, 5, proc.stderr)
            self.assertIn("Winter_2031", proc.stderr)
            self.assertFalse((Path(tmpdir) / "apply-summary.json").exists())

    def test_apply_with_manual_decisions_and_xlsx_output(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            decisions_path = Path(tmpdir) / "decisions.json"
            decisions_path.write_text(
                json.dumps({"overrides": {"Winter_2031": "Winter_2021"}, "drop": ["Notes"]}),
                encoding="utf-8",
            )
            proc = run_cli(
                "apply",
                "sample-data/unresolvable_deflection.csv",
                "--profile",
                "deflection",
                "--decisions",
                str(decisions_path),
                "--format",
                "xlsx",
                "--out",
                tmpdir,
            )
            self.assertEqual(proc.returncode, 0, proc.stderr)
            self.assertTrue((Path(tmpdir) / "unresolvable_deflection-clean.xlsx").exists())

    def test_bad_decisions_file_is_a_command_error(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            decisions_path = Path(tmpdir) / "decisions.json"
            decisions_path.write_text(json.dumps({"rename": {}}), encoding="utf-8")
            proc = run_cli(
                "apply",
                "sample-data/messy_deflection.csv",
                "--profile",
                "deflection",
                "--decisions",
                str(decisions_path),
                "--dry-run",
            )
            self.assertEqual(proc.returncode, 1)
            self.assertIn("Unknown decision key", proc.stderr)

    def test_apply_dry_run_writes_nothing(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            proc = run_cli(
                "apply", "sample-data/messy_deflection.csv", "--profile", "deflection", "--dry-run", "--out", tmpdir
            )
            self.assertEqual(proc.returncode, 0, proc.stderr)
            self.assertEqual(list(Path(tmpdir).iterdir()), [])

    def test_template_prints_sample_csv(self):
        proc = run_cli("template", "lte_crack")
        self.assertEqual(proc.returncode, 0, proc.stderr)
        self.assertEqual(proc.stdout.splitlines()[0], "Year,Small,Medium,Large")

    def test_explain_known_and_unknown_rules(self):
        proc = run_cli("explain", "row_duplicate_key", "--json")
        self.assertEqual(proc.returncode, 0)
        self.assertTrue(json.loads(proc.stdout)["auto_fixable"])
        proc = run_cli("explain", "nope")
        self.assertEqual(proc.returncode, 1)

    def test_version(self):
        proc = run_cli("version")
        self.assertEqual(proc.returncode, 0)
        self.assertEqual(proc.stdout.strip(), "0.1.0")


if __name__ == "__main__":
    unittest.main()
