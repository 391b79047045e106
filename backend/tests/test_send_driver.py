"""
Tests for the Celery send driver (outreach.tasks.sending) and the Redis
send lock. Redis and the broker are mocked; the task body runs eagerly
against the in-memory database.
"""
from contextlib import contextmanager
from unittest.mock import MagicMock, patch

import pytest
from sqlmodel import select

from outreach.core.concurrency import CampaignSendLock
from outreach.models.operation_log import OperationLog
from outreach.tasks.sending import (
    LOCKED_RETRY_SECONDS,
    drive_campaign_send,
    next_countdown,
    schedule_campaign_send,
)

TASK_ID = "drv-1"


class FakeLock:
    def __init__(self, acquired=True):
        self.acquired = acquired

    @contextmanager
    def hold(self):
        yield self.acquired


@pytest.fixture
def driver(engine, email_client):
    """Patch the driver's Redis registry, lock, broker and engine."""
    registry = {"current": TASK_ID}
    lock = FakeLock()
    with patch("outreach.tasks.sending.engine", engine), \
            patch("outreach.tasks.sending.get_email_client", return_value=email_client), \
            patch("outreach.tasks.sending.get_send_driver", side_effect=lambda cid: registry["current"]), \
            patch("outreach.tasks.sending.set_send_driver") as set_driver, \
            patch("outreach.tasks.sending.clear_send_driver") as clear_driver, \
            patch("outreach.tasks.sending.get_campaign_send_lock", side_effect=lambda cid: lock), \
            patch.object(drive_campaign_send, "apply_async") as apply_async:
        yield MagicMock(
            registry=registry,
            lock=lock,
            set_driver=set_driver,
            clear_driver=clear_driver,
            apply_async=apply_async,
        )


def run_tick(campaign_id, task_id=TASK_ID):
    return drive_campaign_send.apply(args=(campaign_id,), task_id=task_id).get()


class TestNextCountdown:

    def test_sent_uses_recommended_delay(self):
        assert next_countdown({"sent": True, "recommended_delay_seconds": 180}) == 180

    def test_skip_uses_retry_after(self):
        assert next_countdown({"skipped": True, "retry_after_seconds": 3600}) == 3600

    def test_suppressed_skip_continues_at_once(self):
        assert next_countdown({"skipped": True, "retry_after_seconds": 0}) == 0

    def test_completed_stops(self):
        assert next_countdown({"completed": True}) is None


class TestScheduleCampaignSend:

    def test_registers_then_enqueues(self):
        with patch("outreach.tasks.sending.set_send_driver") as set_driver, \
                patch.object(drive_campaign_send, "apply_async") as apply_async:
            task_id = schedule_campaign_send(7, countdown=42)

        set_driver.assert_called_once_with(7, task_id)
        apply_async.assert_called_once_with((7,), countdown=42, task_id=task_id)


class TestDriveCampaignSend:

    def test_sends_and_schedules_next_tick(self, driver, session, make_campaign, make_contact, make_recipient, email_client):
        campaign = make_campaign(status="sending", min_delay_seconds=60, max_delay_seconds=60)
        recipient = make_recipient(campaign, make_contact(), status="approved")
        make_recipient(campaign, make_contact(), status="approved")

        result = run_tick(campaign.id)

        assert result["sent"] is True
        assert result["recipient_id"] == recipient.id
        assert len(email_client.sent) == 1
        driver.apply_async.assert_called_once()
        assert driver.apply_async.call_args.kwargs["countdown"] == 60

    def test_completion_clears_driver(self, driver, session, make_campaign, make_contact, make_recipient):
        campaign = make_campaign(status="sending")
        make_recipient(campaign, make_contact(), status="sent")

        result = run_tick(campaign.id)

        assert result == {"completed": True}
        driver.clear_driver.assert_called_once_with(campaign.id)
        driver.apply_async.assert_not_called()
        session.refresh(campaign)
        assert campaign.status == "completed"

    def test_paused_campaign_stops(self, driver, make_campaign):
        campaign = make_campaign(status="paused")

        result = run_tick(campaign.id)

        assert result == {"stopped": "paused"}
        driver.clear_driver.assert_called_once_with(campaign.id)
        driver.apply_async.assert_not_called()

    def test_superseded_tick_exits(self, driver, make_campaign, email_client):
        campaign = make_campaign(status="sending")
        driver.registry["current"] = "newer-tick"

        result = run_tick(campaign.id)

        assert result == {"stopped": "superseded"}
        assert email_client.sent == []
        driver.clear_driver.assert_not_called()

    def test_locked_retries_later(self, driver, make_campaign, email_client):
        campaign = make_campaign(status="sending")
        driver.lock.acquired = False

        result = run_tick(campaign.id)

        assert result == {"stopped": "locked"}
        assert email_client.sent == []
        assert driver.apply_async.call_args.kwargs["countdown"] == LOCKED_RETRY_SECONDS

    def test_provider_error_pauses_campaign(self, driver, session, make_campaign, make_contact, make_recipient, email_client):
        campaign = make_campaign(status="sending")
        make_recipient(campaign, make_contact(), status="approved")
        email_client.fail_with = "Resend API error 500"

        result = run_tick(campaign.id)

        assert result["stopped"] == "error"
        assert "500" in result["error"]
        driver.clear_driver.assert_called_once_with(campaign.id)
        session.refresh(campaign)
        assert campaign.status == "paused"
        log = session.exec(select(OperationLog).where(OperationLog.action == "send_driver_paused")).first()
        assert log is not None

    def test_outside_window_waits_for_window(self, driver, make_campaign, make_contact, make_recipient):
        campaign = make_campaign(status="sending")
        make_recipient(campaign, make_contact(), status="approved")
        skip = {"skipped": True, "reason": "outside_send_window", "retry_after_seconds": 5400}

        with patch("outreach.tasks.sending.CampaignSendDispatcher") as dispatcher:
            dispatcher.return_value.send_next.return_value = skip
            result = run_tick(campaign.id)

        assert result == skip
        assert driver.apply_async.call_args.kwargs["countdown"] == 5400


class TestCampaignSendLock:

    def test_acquire_and_release(self):
        client = MagicMock()
        client.set.return_value = True
        lock = CampaignSendLock(client, 3, timeout=60)

        with lock.hold() as acquired:
            assert acquired is True
            name, token = client.set.call_args.args
            assert name == "campaign_send_lock:3"
            assert client.set.call_args.kwargs == {"nx": True, "ex": 60}

        client.register_script.return_value.assert_called_once_with(keys=[name], args=[token])

    def test_held_elsewhere(self):
        client = MagicMock()
        client.set.return_value = None
        lock = CampaignSendLock(client, 3)

        with lock.hold() as acquired:
            assert acquired is False

        client.register_script.assert_not_called()
