import json
import os
import tempfile
import threading
import unittest
import urllib.error
import urllib.request
from unittest import mock

import code_state as cs
import config
import recorder
import session_store


T0 = 1_700_000_000.0


class RecorderRuntimeTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.state_file = os.path.join(self.tmp.name, "state.json")
        patchers = [
            mock.patch.object(config, "STATE_FILE", self.state_file),
            mock.patch.object(config, "REPORT_DIR", os.path.join(self.tmp.name, "reports")),
            mock.patch.object(config, "SESSION_ID", ""),
            mock.patch.object(config, "TELEGRAM_BOT_TOKEN", ""),
            mock.patch.object(config, "TELEGRAM_CHAT_ID", ""),
            mock.patch.object(config, "SUPABASE_URL", ""),
            mock.patch.object(config, "SUPABASE_KEY", ""),
        ]
        for p in patchers:
            p.start()
            self.addCleanup(p.stop)

    def _runtime(self, **kwargs):
        kwargs.setdefault("session_id", "s1")
        kwargs.setdefault("follow", False)
        # Long interval: the clock thread runs but never ticks during a test.
        kwargs.setdefault("tick_interval_sec", 3600)
        rt = recorder.RecorderRuntime(**kwargs)
        self.addCleanup(rt.clock.stop)
        return rt

    def test_start_code_runs_clock_snapshots_and_publishes(self):
        rt = self._runtime()
        with mock.patch.object(session_store, "publish") as publish, \
                mock.patch.object(recorder.notifier, "notify_code_started") as started:
            ok, msg = rt.dispatch(cs.StartCode("VF"), now=T0)
        self.assertEqual((ok, msg), (True, "applied"))
        self.assertTrue(rt.state.is_active)
        self.assertTrue(rt.clock.running)
        started.assert_called_once_with("s1", "VF")

        session_id, doc = publish.call_args[0]
        self.assertEqual(session_id, "s1")
        self.assertEqual(doc["mode"], "active")

        with open(self.state_file, encoding="utf-8") as f:
            snap = json.load(f)
        self.assertEqual(snap["session_id"], "s1")
        self.assertEqual(len(snap["state"]["logs"]), 2)

    def test_ignored_action_is_not_published(self):
        rt = self._runtime()
        with mock.patch.object(session_store, "publish") as publish:
            ok, msg = rt.dispatch(cs.Tick(), now=T0)
        self.assertEqual((ok, msg), (True, "ignored"))
        publish.assert_not_called()
        self.assertFalse(os.path.exists(self.state_file))

    def test_end_code_stops_clock_and_notifies(self):
        rt = self._runtime()
        rt.dispatch(cs.StartCode("VF"), now=T0)
        with mock.patch.object(recorder.notifier, "notify_code_ended") as ended:
            rt.dispatch(cs.EndCode("ROSC"), now=T0 + 5)
        self.assertFalse(rt.clock.running)
        ended.assert_called_once_with("ROSC", "00:00", "s1")

    def test_advisories_are_recorded_and_sent(self):
        rt = self._runtime()
        rt.dispatch(cs.StartCode("PEA"), now=T0)
        with mock.patch.object(recorder.notifier, "notify_advisory") as advisory, \
                self.assertLogs("recorder", level="WARNING"):
            for i in range(7):
                rt.dispatch(cs.AdministerMedication("Atropine"), now=T0 + 10 + i)
        advisory.assert_called_once_with("Total Atropine > 3 mg", "s1")
        self.assertEqual(rt.advisories[-1]["kind"], "atropine_max")

    def test_clock_ticks_through_dispatch(self):
        rt = self._runtime(tick_interval_sec=0.01)
        rt.dispatch(cs.StartCode("VF"), now=T0)
        pause = threading.Event()
        for _ in range(300):
            if rt.state.elapsed_seconds >= 3:
                break
            pause.wait(0.01)
        rt.dispatch(cs.EndCode(), now=T0 + 1)
        self.assertGreaterEqual(rt.state.elapsed_seconds, 3)
        self.assertFalse(rt.clock.running)
        self.assertEqual(cs.check_invariants(rt.state), [])

    def test_follow_mode_is_read_only(self):
        rt = self._runtime(follow=True)
        ok, msg = rt.dispatch(cs.StartCode("VF"), now=T0)
        self.assertFalse(ok)
        self.assertEqual(msg, "read-only session")
        self.assertEqual(rt.state.mode, "pre_assessment")

    def test_apply_remote(self):
        source = self._runtime()
        source.dispatch(cs.StartCode("VF"), now=T0)
        source.dispatch(cs.DeliverShock(200), now=T0 + 1)

        viewer = self._runtime(follow=True)
        self.assertTrue(viewer.apply_remote(cs.to_dict(source.state)))
        self.assertEqual(viewer.state, source.state)
        self.assertFalse(viewer.apply_remote({"logs": [{"label": "no id"}]}))
        self.assertEqual(viewer.state, source.state)

    def test_snapshot_round_trip(self):
        rt = self._runtime()
        rt.dispatch(cs.StartCode("VF"), now=T0)
        rt.dispatch(cs.AdministerMedication("Adrenaline"), now=T0 + 2)

        restored = self._runtime(session_id="other")
        self.assertTrue(restored.load_snapshot())
        self.assertEqual(restored.state, rt.state)
        self.assertEqual(restored.session_id, "s1")

    def test_snapshot_for_another_session_is_ignored(self):
        rt = self._runtime()
        rt.dispatch(cs.StartCode("VF"), now=T0)
        with mock.patch.object(config, "SESSION_ID", "s2"):
            other = self._runtime(session_id="s2")
            self.assertFalse(other.load_snapshot())
        self.assertEqual(other.state.mode, "pre_assessment")

    def test_corrupt_snapshot_starts_fresh(self):
        with open(self.state_file, "w", encoding="utf-8") as f:
            f.write("{not json")
        rt = self._runtime()
        with self.assertLogs("recorder", level="WARNING"):
            self.assertFalse(rt.load_snapshot())
        self.assertEqual(rt.state.mode, "pre_assessment")

    def test_status_report_and_export(self):
        rt = self._runtime()
        rt.dispatch(cs.UpdatePatient("hn", "777"), now=T0)
        rt.dispatch(cs.StartCode("VF"), now=T0 + 1)
        payload = rt.status_payload()
        self.assertEqual(payload["session_id"], "s1")
        self.assertTrue(payload["view"]["shockable"])
        self.assertEqual(payload["state"]["patient"]["hn"], "777")
        self.assertIn("entries_per_category", payload["stats"])
        self.assertIn("CPCR RECORD FORM", rt.report_text())

        paths = rt.export()
        self.assertTrue(paths["text"].endswith("ACLS_777.txt"))
        self.assertTrue(os.path.exists(paths["csv"]))

    def test_recorder_config_from_env_values(self):
        with mock.patch.object(config, "MED_DEBOUNCE_MS", 1500), \
                mock.patch.object(config, "EPINEPHRINE_INTERVAL_SEC", 240):
            cfg = recorder._recorder_cfg()
        self.assertEqual(cfg.med_debounce_sec, 1.5)
        self.assertEqual(cfg.epinephrine_interval_sec, 240)


class FormBuilderTests(unittest.TestCase):
    def test_known_form(self):
        action = recorder.build_form_action({
            "form": "secure_airway",
            "fields": {"device": "ETT", "tube_size": "8", "depth_cm": "23"},
        })
        self.assertEqual(action, cs.SecureAirway("ETT No.8 dept.23cms via BVM"))

    def test_empty_labs_form_logs_nothing(self):
        self.assertIsNone(recorder.build_form_action({"form": "send_labs", "fields": {"selected": []}}))

    def test_bad_forms_raise_value_error(self):
        for body in (
            {"form": "massage"},
            {"form": "secure_airway", "fields": {"colour": "red"}},
            {"form": "secure_airway", "fields": ["ETT"]},
            {"form": "rule_out", "fields": {"cause_id": "Nope"}},
        ):
            with self.subTest(body=body):
                with self.assertRaises(ValueError):
                    recorder.build_form_action(body)


class HttpApiTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        patchers = [
            mock.patch.object(config, "STATE_FILE", os.path.join(tmp.name, "state.json")),
            mock.patch.object(config, "TELEGRAM_BOT_TOKEN", ""),
            mock.patch.object(config, "SUPABASE_URL", ""),
        ]
        for p in patchers:
            p.start()
            self.addCleanup(p.stop)

        self.rt = recorder.RecorderRuntime(session_id="http", follow=False, tick_interval_sec=3600)
        self.addCleanup(self.rt.clock.stop)
        p = mock.patch.object(recorder, "_RUNTIME", self.rt)
        p.start()
        self.addCleanup(p.stop)

        self.server = recorder.ThreadingHTTPServer(("127.0.0.1", 0), recorder.RecorderHandler)
        thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        thread.start()
        self.addCleanup(self.server.server_close)
        self.addCleanup(self.server.shutdown)
        self.base = f"http://127.0.0.1:{self.server.server_address[1]}"

    def _post(self, path, body):
        req = urllib.request.Request(
            self.base + path,
            data=json.dumps(body).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=5) as resp:
                return resp.status, json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            return e.code, json.loads(e.read().decode("utf-8"))

    def test_action_endpoint(self):
        code, body = self._post("/api/action", {"type": "start_code", "rhythm": "VF"})
        self.assertEqual(code, 200)
        self.assertEqual(body, {"ok": True, "message": "applied"})
        self.assertTrue(self.rt.state.is_active)

        code, body = self._post("/api/action", {"type": "launch_rocket"})
        self.assertEqual(code, 400)
        self.assertFalse(body["ok"])

    def test_form_endpoint(self):
        self._post("/api/action", {"type": "start_code", "rhythm": "VF"})
        code, body = self._post("/api/form", {"form": "shock", "fields": {"energy_joules": 150}})
        self.assertEqual(code, 200)
        self.assertEqual(self.rt.state.logs[0].detail, "150J")

    def test_mistyped_fields_are_rejected_before_the_reducer(self):
        self._post("/api/action", {"type": "start_code", "rhythm": "VF"})
        before = self.rt.state
        for path, body in (
            ("/api/action", {"type": "add_log", "category": "info", "label": 5}),
            ("/api/action", {"type": "end_code", "reason": 5}),
            ("/api/form", {"form": "send_labs", "fields": {"selected": "CBC"}}),
        ):
            with self.subTest(body=body):
                code, reply = self._post(path, body)
                self.assertEqual(code, 400)
                self.assertFalse(reply["ok"])
        self.assertEqual(self.rt.state, before)
        self.assertTrue(self.rt.clock.running)

    def test_status_and_report(self):
        with urllib.request.urlopen(self.base + "/api/status", timeout=5) as resp:
            status = json.loads(resp.read().decode("utf-8"))
        self.assertEqual(status["session_id"], "http")
        with urllib.request.urlopen(self.base + "/api/report", timeout=5) as resp:
            self.assertIn("CPCR RECORD FORM", resp.read().decode("utf-8"))


if __name__ == "__main__":
    unittest.main()
