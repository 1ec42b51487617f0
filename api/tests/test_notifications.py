"""Email notifications and the scheduled sync tasks."""

from datetime import date, time
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from venuebook import worker
from venuebook.core.config import Settings, settings
from venuebook.services.notifications import (
    EmailNotifier,
    Notification,
    NotificationType,
    NullNotifier,
    build_notifier,
)

USER = SimpleNamespace(name="Member", email="member@example.com")


def _line(court_name, deducted=60, refunded=0):
    return SimpleNamespace(
        id=1,
        court=SimpleNamespace(name=court_name),
        booking_date=date(2026, 3, 16),
        start_time=time(10, 0),
        end_time=time(11, 0),
        points_deducted=deducted,
        points_refunded=refunded,
    )


def _notifier():
    return EmailNotifier("smtp.example.com", 587, "noreply@venuebook.io")


class TestEmailNotifier:
    def test_confirmation(self):
        line = _line("Solo Court")
        message = _notifier().render(Notification(NotificationType.CONFIRMED, line, USER, line.court))

        assert message["To"] == "member@example.com"
        assert message["Subject"] == "Booking confirmed: Monday 16 March 10:00-11:00"
        assert "Solo Court" in message.get_content()
        assert "60 points were deducted" in message.get_content()

    def test_full_venue_cancellation(self):
        lines = [_line("Solo Court", refunded=60), _line("Training Court", refunded=60), _line("Competition Court", refunded=60)]
        group = SimpleNamespace(reservations=lines)
        message = _notifier().render(Notification(NotificationType.CANCELLED, lines[0], USER, lines[0].court, group))

        assert message["Subject"].startswith("Booking cancelled")
        body = message.get_content()
        assert "the full venue (Solo Court, Training Court, Competition Court)" in body
        assert "180 points were refunded" in body

    @patch("venuebook.services.notifications.aiosmtplib.send", new_callable=AsyncMock)
    async def test_notify_sends_over_smtp(self, mock_send):
        line = _line("Solo Court")
        await _notifier().notify(Notification(NotificationType.CONFIRMED, line, USER, line.court))

        mock_send.assert_awaited_once()
        assert mock_send.await_args.kwargs == {"hostname": "smtp.example.com", "port": 587}


def test_build_notifier():
    assert isinstance(build_notifier(Settings(notifications_enabled=False)), NullNotifier)
    assert isinstance(build_notifier(Settings(notifications_enabled=True)), EmailNotifier)


class TestWorker:
    def test_beat_schedule(self):
        schedule = worker.celery_app.conf.beat_schedule
        assert schedule["calendar-sync-today"]["task"] == "venuebook.worker.sync_today"
        assert schedule["calendar-sync-month"]["task"] == "venuebook.worker.sync_month"

    def test_disabled_calendar_skips(self, monkeypatch):
        monkeypatch.setattr(settings, "calendar_enabled", False)
        assert worker.sync_today() == {"skipped": True}

    def test_enabled_runs_pass(self, monkeypatch):
        monkeypatch.setattr(settings, "calendar_enabled", True)
        report = {"created": 1, "updated": 0, "failed": 0, "deleted": 0, "delete_failed": 0, "skipped": False}
        with patch("venuebook.worker._run", new_callable=AsyncMock, return_value=report) as mock_run:
            assert worker.force_resync() == report
        mock_run.assert_awaited_once()
