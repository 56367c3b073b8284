from __future__ import annotations

import io
import tempfile
import unittest
from contextlib import redirect_stderr
from pathlib import Path
from unittest import mock

from survey_doctor import cli
from survey_doctor.apply import CORRECT_VALUE, DROP_COLUMN, DROP_ROW, RENAME_COLUMN, apply_fixes, revalidate
from survey_doctor.errors import ApplicationConsistencyError, ApplicationError
from survey_doctor.parser import parse
from survey_doctor.pipeline import validate
from survey_doctor.schemas import profile
from survey_doctor.session import ReconciliationSession

YEAR = 2025

MESSY_DEFLECTION = "DMI2,Wintr_22,Sumer22,Winter_2023\n0,3.4,3.2,3.6\n130,3.1,3.0,3.3\n50,2.9,2.8,3.1\n50,3.0,2.7,3.0\n"


def prepared(text: str, name: str):
    headers, rows = parse(text)
    report = validate(headers, rows, name, YEAR)
    return headers, rows, report.session()


class ApplyTests(unittest.TestCase):
    def test_messy_deflection_is_cleaned(self):
        headers, rows, session = prepared(MESSY_DEFLECTION, "deflection")
        result = apply_fixes(headers, rows, session)
        self.assertTrue(result.ok, result.error)
        dataset = result.dataset
        self.assertEqual(dataset.headers, ("DMI", "Winter_2022", "Summer_2022", "Winter_2023"))
        self.assertEqual([row["DMI"] for row in dataset.rows], ["0", "150", "50"])
        self.assertEqual(dataset.rows[2]["Winter_2022"], "3.0")
        self.assertEqual(dataset.source_rows, (0, 1, 3))
        self.assertEqual(
            dataset.change_counts(),
            {RENAME_COLUMN: 3, CORRECT_VALUE: 1, DROP_ROW: 1},
        )

    def test_blocked_session_returns_error_instead_of_raising(self):
        headers, rows, session = prepared("DMI,Winter_2022,Notes\n0,1,x\n", "deflection")
        result = apply_fixes(headers, rows, session)
        self.assertFalse(result.ok)
        self.assertIsNone(result.dataset)
        self.assertIsInstance(result.error, ApplicationError)
        self.assertTrue(result.error.blockers)

    def test_dropped_columns_are_logged(self):
        headers, rows, session = prepared("DMI,Winter_2022,Notes\n0,1,x\n", "deflection")
        session.drop_column("Notes")
        result = apply_fixes(headers, rows, session)
        self.assertEqual(result.dataset.headers, ("DMI", "Winter_2022"))
        self.assertEqual([change.kind for change in result.dataset.changes], [DROP_COLUMN])

    def test_season_headers_are_canonicalised_and_ordered(self):
        headers, rows, session = prepared("Summer 23,DMI,Winter22,Winter_2021\n1,0,2,3\n", "deflection")
        result = apply_fixes(headers, rows, session)
        self.assertEqual(result.dataset.headers, ("DMI", "Winter_2021", "Winter_2022", "Summer_2023"))
        self.assertEqual(result.dataset.rows[0], {"DMI": "0", "Winter_2021": "3", "Winter_2022": "2", "Summer_2023": "1"})

    def test_explicit_duplicate_choice_is_kept(self):
        headers, rows, session = prepared("DMI,Winter_2022\n50,1\n50,2\n50,3\n", "deflection")
        session.choose_duplicate("50", 1)
        result = apply_fixes(headers, rows, session)
        self.assertEqual(result.dataset.rows, ({"DMI": "50", "Winter_2022": "2"},))
        self.assertEqual(result.warnings, ("2 duplicate row(s) removed",))

    def test_apply_is_idempotent(self):
        headers, rows, session = prepared(MESSY_DEFLECTION, "deflection")
        first = apply_fixes(headers, rows, session)
        second = apply_fixes(headers, rows, session)
        self.assertEqual(first, second)

    def test_cleaned_output_revalidates_clean(self):
        headers, rows, session = prepared(MESSY_DEFLECTION, "deflection")
        dataset = apply_fixes(headers, rows, session).dataset
        clean_headers, clean_rows = parse(dataset.to_csv_text())
        report = validate(clean_headers, clean_rows, "deflection", YEAR)
        self.assertTrue(report.is_valid, report.defects())

    def test_session_for_other_rows_is_rejected(self):
        headers, rows, session = prepared(MESSY_DEFLECTION, "deflection")
        with self.assertRaises(ValueError):
            apply_fixes(headers, rows[:1], session)


class ConsistencyCheckTests(unittest.TestCase):
    FUTURE_YEAR_SHEET = "Year,Winter,Summer\n2031,1,1\n"

    def test_revalidate_reports_remaining_defects(self):
        self.assertEqual(revalidate("Year,Winter,Summer\n2022,1,1\n", profile("lte_season"), YEAR), [])
        remaining = revalidate(self.FUTURE_YEAR_SHEET, profile("lte_season"), YEAR)
        self.assertEqual(len(remaining), 1)
        self.assertIn("2031", str(remaining[0]))

    def test_defects_left_after_apply_raise(self):
        headers, rows, session = prepared(self.FUTURE_YEAR_SHEET, "lte_season")
        self.assertFalse(session.can_apply)
        with mock.patch.object(ReconciliationSession, "blockers", return_value=[]):
            with self.assertRaises(ApplicationConsistencyError) as caught:
                apply_fixes(headers, rows, session)
        self.assertIn("failed re-validation", str(caught.exception))
        self.assertEqual(len(caught.exception.defects), 1)

    def test_cli_apply_exits_1_on_failed_revalidation(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "future.csv"
            path.write_text(self.FUTURE_YEAR_SHEET, encoding="utf-8")
            stderr = io.StringIO()
            with mock.patch.object(ReconciliationSession, "blockers", return_value=[]), redirect_stderr(stderr):
                code = cli.main(
                    ["apply", str(path), "--profile", "lte_season", "--current-year", str(YEAR), "--out", tmpdir]
                )
            self.assertEqual(code, cli.EXIT_COMMAND_ERROR)
            self.assertIn("failed re-validation", stderr.getvalue())
            self.assertEqual(sorted(p.name for p in Path(tmpdir).iterdir()), ["future.csv"])


if __name__ == "__main__":
    unittest.main()
