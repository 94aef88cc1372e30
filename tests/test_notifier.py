import unittest
from unittest import mock

import config
import notifier


class NotifierTests(unittest.TestCase):
    def test_unconfigured_telegram_sends_nothing(self):
        with mock.patch.object(config, "TELEGRAM_BOT_TOKEN", ""), \
                mock.patch.object(config, "TELEGRAM_CHAT_ID", ""), \
                mock.patch("urllib.request.urlopen") as urlopen:
            self.assertFalse(notifier.notify_code_started("s1", "VF"))
            self.assertEqual(notifier._telegram_api("sendMessage", {}), {})
        urlopen.assert_not_called()

    def test_messages_are_html_escaped(self):
        with mock.patch.object(config, "TELEGRAM_CHAT_ID", "123"), \
                mock.patch.object(notifier, "_telegram_api", return_value={"ok": True}) as api:
            self.assertTrue(notifier.notify_advisory("Total Atropine > 3 mg", "s<1>"))
        method, payload = api.call_args[0]
        self.assertEqual(method, "sendMessage")
        self.assertEqual(payload["chat_id"], "123")
        self.assertIn("Total Atropine &gt; 3 mg", payload["text"])
        self.assertIn("<code>s&lt;1&gt;</code>", payload["text"])

    def test_code_lifecycle_messages(self):
        with mock.patch.object(config, "TELEGRAM_CHAT_ID", "123"), \
                mock.patch.object(notifier, "_telegram_api", return_value={"ok": True}) as api:
            notifier.notify_code_started("s1", None)
            notifier.notify_code_ended("ROSC", "12:30", "s1")
        started = api.call_args_list[0][0][1]["text"]
        ended = api.call_args_list[1][0][1]["text"]
        self.assertIn("CODE BLUE", started)
        self.assertIn("Initial rhythm: Unknown", started)
        self.assertIn("Decision: ROSC", ended)
        self.assertIn("Duration: 12:30", ended)

    def test_http_failure_is_swallowed(self):
        with mock.patch.object(config, "TELEGRAM_BOT_TOKEN", "tok"), \
                mock.patch("urllib.request.urlopen", side_effect=OSError("network down")):
            self.assertEqual(notifier._telegram_api("sendMessage", {"text": "x"}), {})


if __name__ == "__main__":
    unittest.main()
