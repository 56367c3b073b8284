from __future__ import annotations

import unittest

from survey_doctor.parser import parse
from survey_doctor.pipeline import validate
from survey_doctor.session import starter_decisions

YEAR = 2025

MESSY_DEFLECTION = "DMI2,Wintr_22,Sumer22,Winter_2023\n0,1,1,1\n130,1,1,1\n50,1,1,1\n50,1,1,1\n"


def session_for(text: str, name: str):
    headers, rows = parse(text)
    return validate(headers, rows, name, YEAR).session()


class ReadinessTests(unittest.TestCase):
    def test_confident_suggestions_are_ready_to_apply(self):
        session = session_for(MESSY_DEFLECTION, "deflection")
        self.assertTrue(session.can_apply, session.blockers())
        self.assertEqual(session.resolved_targets(), {0: "DMI", 1: "Winter_2022", 2: "Summer_2022"})

    def test_unresolved_suggestion_blocks_until_dropped(self):
        session = session_for("DMI,Winter_2022,Notes\n0,1,x\n", "deflection")
        self.assertFalse(session.can_apply)
        self.assertIn("Notes", session.blockers()[0])
        session.drop_column("Notes")
        self.assertTrue(session.can_apply)
        session.restore_column("Notes")
        self.assertFalse(session.can_apply)

    def test_override_resolves_and_is_checked(self):
        session = session_for("DMI,Winter_2022,Wintr\n0,1,2\n", "deflection")
        session.override("Wintr", "Winter_2099")
        self.assertFalse(session.can_apply)
        session.override("Wintr", "Winter_2021")
        self.assertTrue(session.can_apply, session.blockers())

    def test_collision_blocks_and_clears(self):
        session = session_for("Year,Wi,Win,Summer\n2022,1,1,1\n", "lte_season")
        self.assertEqual(len(session.collisions()), 1)
        self.assertFalse(session.can_apply)
        session.drop_column("Win")
        self.assertEqual(session.collisions(), ())
        self.assertTrue(session.can_apply, session.blockers())

    def test_override_into_a_kept_header_collides(self):
        session = session_for("Year,Winter,Summer,Wntr\n2022,1,1,1\n", "lte_season")
        self.assertEqual(len(session.collisions()), 1)
        session.override("Wntr", "Summer")
        self.assertEqual(session.collisions()[0].target, "Summer")
        session.drop_column("Wntr")
        self.assertTrue(session.can_apply, session.blockers())

    def test_missing_required_column_blocks(self):
        session = session_for("Year,Winter\n2022,1\n", "lte_season")
        self.assertFalse(session.can_apply)
        self.assertTrue(any("Summer" in blocker for blocker in session.blockers()))

    def test_dropping_the_only_season_column_blocks(self):
        session = session_for("DMI,Wintr_22\n0,1\n", "deflection")
        self.assertTrue(session.can_apply)
        session.drop_column("Wintr_22")
        self.assertFalse(session.can_apply)


class ValueDecisionTests(unittest.TestCase):
    def test_manual_value_required_for_future_year(self):
        session = session_for("Year,Winter,Summer\n2021,1,1\n2031,1,1\n", "lte_season")
        self.assertFalse(session.can_apply)
        session.override_value(1, 2023)
        self.assertTrue(session.can_apply, session.blockers())

    def test_correction_applies_to_every_matching_value(self):
        session = session_for("DMI,Winter_2022\n0,1\nabc,2\nabc,3\n", "deflection")
        self.assertEqual(len(session.blockers()), 2)
        session.correct_value("abc", 100)
        self.assertEqual(session.duplicate_groups()[0].row_indexes, (1, 2))
        self.assertTrue(session.can_apply, session.blockers())

    def test_manual_correction_beats_automatic_rounding(self):
        session = session_for("DMI,Winter_2022\n130,1\n", "deflection")
        self.assertEqual(session.tentative().corrections, {"130": "150"})
        session.correct_value("130", "100")
        self.assertEqual(session.tentative().rows[0].text("DMI"), "100")

    def test_corrections_can_create_duplicate_rows(self):
        session = session_for("DMI,Winter_2022\n150,1\n130,2\n", "deflection")
        groups = session.duplicate_groups()
        self.assertEqual(len(groups), 1)
        self.assertEqual(groups[0].row_indexes, (0, 1))
        self.assertEqual(session.chosen_rows(), {"150": 1})


class DuplicateChoiceTests(unittest.TestCase):
    def test_default_is_last_row(self):
        session = session_for("DMI,Winter_2022\n50,1\n50,2\n50,3\n", "deflection")
        self.assertEqual(session.chosen_rows(), {"50": 2})
        self.assertTrue(session.can_apply)

    def test_explicit_choice(self):
        session = session_for("DMI,Winter_2022\n50,1\n50,2\n", "deflection")
        session.choose_duplicate("050", 0)
        self.assertEqual(session.chosen_rows(), {"50": 0})
        self.assertTrue(session.can_apply)

    def test_choice_outside_the_group_blocks(self):
        session = session_for("DMI,Winter_2022\n50,1\n50,2\n0,3\n", "deflection")
        session.choose_duplicate(50, 2)
        self.assertFalse(session.can_apply)
        self.assertIn("Row 2", session.blockers()[0])


class LifecycleTests(unittest.TestCase):
    def test_cancel_discards_decisions(self):
        session = session_for("DMI,Winter_2022,Notes\n0,1,x\n", "deflection")
        session.drop_column("Notes")
        session.cancel()
        self.assertEqual(session.dropped_columns, set())
        self.assertFalse(session.can_apply)

    def test_unknown_column_reference(self):
        session = session_for(MESSY_DEFLECTION, "deflection")
        with self.assertRaises(KeyError):
            session.drop_column("Nope")
        with self.assertRaises(IndexError):
            session.drop_column(99)
        with self.assertRaises(ValueError):
            session.override("DMI2", "  ")

    def test_starter_decisions_round_trip(self):
        headers, rows = parse("DMI,DMI,Wintr_22\n0,,1\n")
        report = validate(headers, rows, "deflection", YEAR)
        session = report.session()
        decisions = starter_decisions(session.suggestions, report.duplicate_groups)
        self.assertEqual(decisions["overrides"], {"Wintr_22": "Winter_2022"})
        self.assertEqual(decisions["drop"], ["DMI"])

        fresh = report.session()
        fresh.apply_decisions(decisions)
        self.assertEqual(fresh.resolved_targets(), {1: None, 2: "Winter_2022"})
        self.assertTrue(fresh.can_apply, fresh.blockers())

    def test_repeated_source_text_uses_positions(self):
        headers, rows = parse("DMI,Wintr_22,Wintr_22\n0,1,\n")
        report = validate(headers, rows, "deflection", YEAR)
        decisions = starter_decisions(report.session().suggestions)
        self.assertEqual(decisions["overrides"], {"@1": "Winter_2022"})
        self.assertEqual(decisions["drop"], ["@2"])
        session = report.session()
        session.apply_decisions(decisions)
        self.assertTrue(session.can_apply, session.blockers())


if __name__ == "__main__":
    unittest.main()
