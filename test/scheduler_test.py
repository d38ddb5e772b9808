from unittest.mock import MagicMock, patch

from Background.scheduler import MissedPunchScheduler


def test_scheduler_creation():
    scheduler = MissedPunchScheduler(interval_minutes=60, job_func=MagicMock())
    assert scheduler._interval == 60


def test_scheduler_start_stop():
    scheduler = MissedPunchScheduler(interval_minutes=60, job_func=MagicMock())

    with patch.object(scheduler._scheduler, "start") as mock_start:
        scheduler.start()
        mock_start.assert_called_once()

    with patch.object(scheduler._scheduler, "shutdown") as mock_shutdown:
        scheduler.stop()
        mock_shutdown.assert_called_once()
