import unittest
from unittest import mock

import helpers  # noqa: F401

from alert_window import AlertWindow
from focus_schema import DistractionAlert


def make_alert(screenshot_id: int = 1, score: int = 2) -> DistractionAlert:
    return DistractionAlert(
        screenshot_id=screenshot_id,
        productivity_score=score,
        raw_response=f"[{score}] browsing social media",
        png_image_path=f"/tmp/{screenshot_id}.png",
        job_title="Software Engineer",
        job_role="Backend services",
    )


class AlertWindowTests(unittest.TestCase):
    def test_repeated_alerts_reuse_open_window(self) -> None:
        window = AlertWindow()
        with mock.patch("alert_window.threading.Thread") as thread_cls:
            thread_cls.return_value.is_alive.return_value = True
            window.show_or_update(make_alert(1))
            window.show_or_update(make_alert(2, score=3))

        thread_cls.assert_called_once()
        thread_cls.return_value.start.assert_called_once()
        self.assertTrue(window.is_open())
        # The window renders only the newest alert.
        self.assertEqual(window._take_pending().screenshot_id, 2)
        self.assertIsNone(window._take_pending())

    def test_closed_window_is_reopened(self) -> None:
        window = AlertWindow()
        with mock.patch("alert_window.threading.Thread") as thread_cls:
            thread_cls.return_value.is_alive.return_value = False
            window.show_or_update(make_alert(1))
            window.show_or_update(make_alert(2))

        self.assertEqual(thread_cls.call_count, 2)

    def test_feedback_errors_are_contained(self) -> None:
        handler = mock.Mock(side_effect=OSError("disk full"))
        window = AlertWindow(on_feedback=handler)

        with self.assertLogs("alert_window", level="ERROR"):
            window._handle_feedback(make_alert(4), True)

        handler.assert_called_once()

    def test_feedback_without_handler_is_ignored(self) -> None:
        AlertWindow()._handle_feedback(make_alert(), False)


if __name__ == "__main__":
    unittest.main()
