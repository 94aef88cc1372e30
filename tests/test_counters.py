import unittest

import counters as ct
from code_model import LogEntry, RecorderConfig


def _entry(i, label, detail=None, seconds=0):
    return LogEntry(id=i, sequence_seconds=seconds, wall_clock=0.0, category="info", label=label, detail=detail)


class CounterHelperTests(unittest.TestCase):
    def setUp(self):
        self.cfg = RecorderConfig()

    def test_shockable_rhythms(self):
        self.assertTrue(ct.is_shockable("VF"))
        self.assertTrue(ct.is_shockable("pVT"))
        for rhythm in ("PEA", "Asystole", "ROSC", None):
            self.assertFalse(ct.is_shockable(rhythm))

    def test_epinephrine_gate(self):
        self.assertTrue(ct.is_epinephrine_ready(0, None, self.cfg))
        self.assertFalse(ct.is_epinephrine_ready(179, 0, self.cfg))
        self.assertTrue(ct.is_epinephrine_ready(180, 0, self.cfg))
        self.assertEqual(ct.epinephrine_cooldown_remaining(100, 0, self.cfg), 80)
        self.assertEqual(ct.epinephrine_cooldown_remaining(500, 0, self.cfg), 0)
        self.assertEqual(ct.epinephrine_cooldown_remaining(10, None, self.cfg), 0)

    def test_compression_fraction(self):
        self.assertEqual(ct.compression_fraction(False, 10, self.cfg), 98)
        self.assertEqual(ct.compression_fraction(True, 10, self.cfg), 100)
        self.assertEqual(ct.compression_fraction(False, 116, self.cfg), 85)
        self.assertEqual(ct.compression_fraction(True, 116, self.cfg), 85)

    def test_amiodarone_amounts(self):
        self.assertEqual(ct.amiodarone_dose_mg(1, self.cfg), 300)
        self.assertEqual(ct.amiodarone_dose_mg(2, self.cfg), 150)
        self.assertEqual(ct.amiodarone_total_mg(0, self.cfg), 0)
        self.assertEqual(ct.amiodarone_total_mg(1, self.cfg), 300)
        self.assertEqual(ct.amiodarone_total_mg(2, self.cfg), 450)

    def test_dose_parsing_falls_back_to_default(self):
        self.assertEqual(ct.parse_dose_mg("1 mg IV (Total: 1 mg)", 0.5), 1.0)
        self.assertEqual(ct.parse_dose_mg("0.5 mg IV", 0.5), 0.5)
        self.assertEqual(ct.parse_dose_mg("half an amp", 0.5), 0.5)
        self.assertEqual(ct.parse_dose_mg(None, 0.5), 0.5)
        self.assertEqual(ct.parse_dose_mg("1.2.3 mg", 0.5), 0.5)

    def test_formatting(self):
        self.assertEqual(ct.format_mg(1.0), "1")
        self.assertEqual(ct.format_mg(2.5), "2.5")
        self.assertEqual(ct.format_clock(0), "00:00")
        self.assertEqual(ct.format_clock(125), "02:05")
        self.assertEqual(ct.format_clock(-3), "00:00")
        self.assertEqual(ct.cycle_remaining(130, self.cfg), -10)

    def test_latest_adrenaline_uses_newest_first_order(self):
        logs = (
            _entry(3, "Given Amiodarone", seconds=300),
            _entry(2, "Given Adrenaline", seconds=200),
            _entry(1, "Given Adrenaline", seconds=10),
        )
        self.assertEqual(ct.latest_adrenaline_seconds(logs), 200)
        self.assertIsNone(ct.latest_adrenaline_seconds(logs[:1]))

    def test_entry_kind_matching(self):
        self.assertTrue(ct.is_airway_entry(_entry(1, "Advanced Airway Secured")))
        self.assertTrue(ct.is_vascular_entry(_entry(1, "Vascular Access")))
        self.assertFalse(ct.is_vascular_entry(_entry(1, "Vascular Access (retry)")))
        self.assertTrue(ct.is_labs_entry(_entry(1, "Labs / Specimen")))
        self.assertEqual(ct.count_label([_entry(1, "Defibrillation"), _entry(2, "Defibrillation")], "Defibrillation"), 2)


if __name__ == "__main__":
    unittest.main()
