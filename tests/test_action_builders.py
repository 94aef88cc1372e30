import unittest

import action_builders as ab
import code_state as cs


class ActionBuilderTests(unittest.TestCase):
    def test_airway_ett_detail(self):
        self.assertEqual(ab.secure_airway("ETT", "7.5", "22", "BVM"), cs.SecureAirway("ETT No.7.5 dept.22cms via BVM"))
        self.assertEqual(ab.secure_airway("LMA", ventilation="Oxylator"), cs.SecureAirway("LMA via Oxylator"))

    def test_vascular_access_detail(self):
        self.assertEqual(
            ab.establish_vascular_access(),
            cs.EstablishVascularAccess("Peripheral IV NSS 0.9% (Free Flow)"),
        )
        self.assertEqual(ab.establish_vascular_access("IO", "RLS", "KVO").detail, "IO RLS (KVO)")

    def test_labs_detail(self):
        action = ab.send_labs(["CBC", "DTX", "Elyte"], dtx_value="120", custom=" Blood C/S ")
        self.assertEqual(action.detail, "CBC, Elyte, DTX: 120 mg%, Blood C/S")
        self.assertEqual(ab.send_labs(["DTX"]).detail, "DTX")
        self.assertIsNone(ab.send_labs([]))

    def test_labs_must_be_a_list(self):
        for selected in ("CBC", None, {"CBC": True}):
            with self.subTest(selected=selected):
                with self.assertRaises(ValueError):
                    ab.send_labs(selected)
        self.assertEqual(ab.send_labs(("CBC",)).detail, "CBC")

    def test_vital_signs_note(self):
        action = ab.vital_signs_note(bp_sys="90", bp_dia="60", hr="110", spo2="94", note="after ROSC")
        self.assertEqual(action.label, "Vital Signs")
        self.assertEqual(action.detail, "BP: 90/60, HR: 110, SpO2: 94% | after ROSC")
        note = ab.vital_signs_note(note="family informed")
        self.assertEqual((note.label, note.detail), ("Clinical Note", "family informed"))
        self.assertIsNone(ab.vital_signs_note())

    def test_reversible_causes(self):
        self.assertEqual(ab.rule_out("Hypoxia"), cs.AddLog("info", "Rule Out Hypoxia", "Diagnostic"))
        self.assertEqual(
            ab.treating("TensionPneumo"),
            cs.AddLog("procedure", "Treating Tension Pneumothorax", "Therapeutic"),
        )
        with self.assertRaises(ValueError):
            ab.rule_out("Hypochondria")

    def test_bedside_procedure_and_shock(self):
        self.assertEqual(ab.bedside_procedure("FAST Scan"), cs.AddLog("procedure", "FAST Scan"))
        with self.assertRaises(ValueError):
            ab.bedside_procedure("Appendectomy")
        self.assertEqual(ab.shock(), cs.DeliverShock(200))
        self.assertEqual(ab.shock("150"), cs.DeliverShock(150))
        self.assertEqual(ab.terminate("ROSC"), cs.EndCode("ROSC"))


if __name__ == "__main__":
    unittest.main()
