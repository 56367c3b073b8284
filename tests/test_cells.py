from __future__ import annotations

import unittest

from survey_doctor.cells import EMPTY, Empty, Numeric, Row, Text, canonical_key, four_digit_year, to_cell


class CellTests(unittest.TestCase):
    def test_blank_and_none_become_empty(self):
        self.assertEqual(to_cell(None), EMPTY)
        self.assertIsInstance(to_cell("   "), Empty)
        self.assertIsInstance(to_cell(float("nan")), Empty)

    def test_numeric_text_keeps_original_spelling(self):
        cell = to_cell("050")
        self.assertIsInstance(cell, Numeric)
        self.assertEqual(cell.value, 50.0)
        self.assertEqual(cell.text, "050")

    def test_nan_and_inf_text_stay_text(self):
        self.assertIsInstance(to_cell("NaN"), Text)
        self.assertIsInstance(to_cell("inf"), Text)
        self.assertIsInstance(to_cell("1e999"), Text)

    def test_canonical_key_normalises_numbers(self):
        self.assertEqual(canonical_key(to_cell("050")), "50")
        self.assertEqual(canonical_key(to_cell("100.0")), "100")
        self.assertEqual(canonical_key(to_cell(" 75.5 ")), "75.5")
        self.assertIsNone(canonical_key(to_cell("abc")))
        self.assertIsNone(canonical_key(EMPTY))

    def test_four_digit_year(self):
        self.assertEqual(four_digit_year(to_cell("2022")), 2022)
        self.assertIsNone(four_digit_year(to_cell("22")))
        self.assertIsNone(four_digit_year(to_cell("2022.0")))


class RowTests(unittest.TestCase):
    def test_build_pads_and_truncates(self):
        short = Row.build(("A", "B", "C"), ["1"])
        self.assertEqual(short.cells[1:], (EMPTY, EMPTY))
        long = Row.build(("A",), ["1", "2"])
        self.assertEqual(len(long.cells), 1)

    def test_lookup_by_name_returns_first_copy(self):
        row = Row.build(("DMI", "DMI"), ["0", "50"])
        self.assertEqual(row["DMI"].text, "0")
        self.assertEqual(row[1].text, "50")
        self.assertEqual(row.to_dict(), {"DMI": "0"})

    def test_missing_column(self):
        row = Row.build(("DMI",), ["0"])
        self.assertEqual(row.get("Year"), EMPTY)
        with self.assertRaises(KeyError):
            row["Year"]

    def test_with_cell_builds_a_new_row(self):
        row = Row.build(("DMI",), ["130"])
        updated = row.with_cell(0, to_cell("150"))
        self.assertEqual(row.text("DMI"), "130")
        self.assertEqual(updated.text("DMI"), "150")


if __name__ == "__main__":
    unittest.main()
