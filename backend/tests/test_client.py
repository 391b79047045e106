"""
Tests for the operator-side client: API wrapper, send loop, review queue
and the sender CLI.
"""
from unittest.mock import MagicMock, patch

import pytest
import requests

from outreach.client import cli
from outreach.client.api_client import OutreachAPIError, OutreachClient
from outreach.client.review_queue import ReviewQueue
from outreach.client.send_loop import SendLoop, SendLoopError


def response(status_code=200, payload=None, reason="OK"):
    resp = MagicMock()
    resp.status_code = status_code
    resp.reason = reason
    resp.content = b"{}" if payload is not None else b""
    resp.json.return_value = payload
    return resp


@pytest.fixture
def http():
    return MagicMock(headers={})


# ---------------------------------------------------------------------------
# OutreachClient
# ---------------------------------------------------------------------------

class TestOutreachClient:

    def test_error_body_becomes_exception(self, http):
        http.request.return_value = response(409, {"success": False, "error": "Campaign is 'draft'"}, "Conflict")
        client = OutreachClient("http://api.test/api/v1/", session=http)

        with pytest.raises(OutreachAPIError) as exc_info:
            client.send_next(5)

        assert exc_info.value.status_code == 409
        assert exc_info.value.error == "Campaign is 'draft'"
        method, url = http.request.call_args.args
        assert (method, url) == ("POST", "http://api.test/api/v1/campaigns/5/send")

    def test_connection_error(self, http):
        http.request.side_effect = requests.exceptions.ConnectionError("refused")
        client = OutreachClient(session=http)

        with pytest.raises(OutreachAPIError) as exc_info:
            client.pause_campaign(5)
        assert exc_info.value.status_code == 0

    def test_get_campaign_retries_not_found(self, http):
        http.request.side_effect = [
            response(404, {"error": "Campaign not found"}, "Not Found"),
            response(200, {"id": 5, "status": "ready"}),
        ]
        client = OutreachClient(session=http)

        with patch("time.sleep"):
            campaign = client.get_campaign(5)

        assert campaign["status"] == "ready"
        assert http.request.call_count == 2

    def test_get_campaign_gives_up_after_three(self, http):
        http.request.return_value = response(404, {"error": "Campaign not found"}, "Not Found")
        client = OutreachClient(session=http)

        with patch("time.sleep"), pytest.raises(OutreachAPIError):
            client.get_campaign(5)
        assert http.request.call_count == 3

    def test_login_sets_bearer_header(self, http):
        http.request.return_value = response(200, {"access_token": "tok", "token_type": "bearer"})
        client = OutreachClient(session=http)

        assert client.login("admin", "secret") == "tok"
        assert http.headers["Authorization"] == "Bearer tok"


# ---------------------------------------------------------------------------
# SendLoop
# ---------------------------------------------------------------------------

class FakeApi:
    def __init__(self, responses, status="ready", approved=3):
        self.responses = list(responses)
        self.campaign = {"id": 1, "status": status, "recipient_counts": {"approved": approved}}
        self.started = []
        self.paused = 0
        self.sends = 0

    def get_campaign(self, campaign_id):
        return self.campaign

    def start_campaign(self, campaign_id, schedule=True):
        self.started.append(schedule)
        return {"success": True, "status": "sending"}

    def pause_campaign(self, campaign_id):
        self.paused += 1
        return {"status": "paused"}

    def send_next(self, campaign_id):
        self.sends += 1
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def sent(delay=0):
    return {"sent": True, "contact_email": "a@example.com", "recommended_delay_seconds": delay}


class TestSendLoop:

    def test_sends_until_completed(self):
        api = FakeApi([sent(), sent(), {"completed": True}])
        progress = []

        result = SendLoop(api, 1, on_progress=lambda s, t: progress.append((s, t))).run()

        assert result.sent == 2
        assert result.stopped_reason == "completed"
        assert progress == [(1, 3), (2, 3)]
        assert api.started == [False]

    def test_limit(self):
        api = FakeApi([sent(), sent(), sent()])
        result = SendLoop(api, 1, limit=2).run()
        assert result.total == 2
        assert result.sent == 2
        assert result.stopped_reason == "limit"
        assert api.sends == 2

    def test_waits_recommended_delay(self):
        api = FakeApi([sent(delay=120), {"completed": True}])
        loop = SendLoop(api, 1)
        with patch.object(loop.abort, "wait") as wait:
            loop.run()
        wait.assert_called_once_with(120)

    def test_max_sleep_caps_delay(self):
        api = FakeApi([sent(delay=120), {"completed": True}])
        loop = SendLoop(api, 1, max_sleep_seconds=0.5)
        with patch.object(loop.abort, "wait") as wait:
            loop.run()
        wait.assert_called_once_with(0.5)

    def test_window_skip_hands_over(self):
        api = FakeApi([sent(), {"skipped": True, "reason": "outside_send_window", "retry_after_seconds": 900}])
        result = SendLoop(api, 1).run()
        assert result.sent == 1
        assert result.stopped_reason == "outside_send_window"
        assert result.retry_after_seconds == 900

    def test_suppressed_skip_moves_on(self):
        api = FakeApi([
            {"skipped": True, "reason": "suppressed", "retry_after_seconds": 0, "suppressed": True},
            sent(),
            {"completed": True},
        ])
        result = SendLoop(api, 1).run()
        assert result.sent == 1
        assert result.skipped == 1
        assert result.stopped_reason == "completed"

    def test_api_error_stops(self):
        api = FakeApi([sent(), OutreachAPIError(502, "Resend API error")])
        result = SendLoop(api, 1).run()
        assert result.sent == 1
        assert result.stopped_reason == "error"
        assert result.error == "Resend API error"

    def test_stop_aborts_before_next_send(self):
        api = FakeApi([sent(), sent(), {"completed": True}])
        loop = SendLoop(api, 1)
        loop.on_progress = lambda s, t: loop.stop()

        result = loop.run()

        assert result.sent == 1
        assert result.stopped_reason == "aborted"

    def test_pause_marks_campaign(self):
        api = FakeApi([])
        loop = SendLoop(api, 1)
        loop.pause()
        assert loop.abort.is_set()
        assert api.paused == 1

    def test_rejects_draft_campaign(self):
        with pytest.raises(SendLoopError):
            SendLoop(FakeApi([], status="draft"), 1).run()

    def test_rejects_nothing_approved(self):
        with pytest.raises(SendLoopError):
            SendLoop(FakeApi([], approved=0), 1).run()


# ---------------------------------------------------------------------------
# ReviewQueue
# ---------------------------------------------------------------------------

def item(recipient_id, company, subject="Subject", body="Body"):
    return {
        "id": recipient_id,
        "subject": subject,
        "body": body,
        "status": "generated",
        "company": {"id": recipient_id, "name": company} if company else None,
    }


@pytest.fixture
def queue():
    api = MagicMock()
    api.list_recipients.return_value = [
        item(1, "zeta dental"),
        item(2, "Acme Health"),
        item(3, None),
        item(4, "Bright Smiles"),
    ]
    api.update_recipient.side_effect = lambda cid, rid, **fields: {"id": rid, **fields}
    q = ReviewQueue(api, 9)
    q.load()
    return q


class TestReviewQueue:

    def test_sorted_by_company_name(self, queue):
        assert [i["id"] for i in queue.items] == [3, 2, 4, 1]
        queue.client.list_recipients.assert_called_once_with(9, status="generated")

    def test_navigation_clamps(self, queue):
        queue.prev()
        assert queue.cursor == 0
        for _ in range(10):
            queue.next()
        assert queue.cursor == 3

    def test_move_saves_only_dirty(self, queue):
        queue.next()
        queue.client.update_recipient.assert_not_called()

        queue.edit(body="Rewritten")
        queue.next()
        queue.client.update_recipient.assert_called_once_with(9, 2, subject="Subject", body="Rewritten")
        assert queue.items[1]["body"] == "Rewritten"

    def test_approve_saves_then_removes(self, queue):
        queue.next()
        queue.edit(subject="Better subject")
        queue.approve()

        calls = queue.client.update_recipient.call_args_list
        assert calls[0].kwargs == {"subject": "Better subject", "body": "Body"}
        assert calls[1].kwargs == {"approved": True}
        assert [i["id"] for i in queue.items] == [3, 4, 1]
        assert queue.current["id"] == 4

    def test_delete_last_moves_cursor_back(self, queue):
        for _ in range(3):
            queue.next()
        assert queue.delete() is True
        queue.client.delete_recipient.assert_called_once_with(9, 1)
        assert queue.current["id"] == 4

    def test_keys_ignored_while_typing(self, queue):
        assert queue.handle_key("ArrowRight", text_focused=True) is False
        assert queue.handle_key("ArrowDown", modal_open=True) is False
        assert queue.cursor == 0
        assert queue.handle_key("ArrowDown") is True
        assert queue.cursor == 1
        assert queue.handle_key("ArrowUp") is True
        assert queue.cursor == 0
        assert queue.handle_key("Enter") is False

    def test_empty_queue(self):
        api = MagicMock()
        api.list_recipients.return_value = []
        q = ReviewQueue(api, 9)
        assert q.load() == 0
        assert q.current is None
        assert q.approve() is None
        assert q.delete() is False


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

class TestSenderCli:

    def test_parser(self):
        args = cli.build_parser().parse_args(["--campaign", "12", "--limit", "5"])
        assert args.campaign == 12
        assert args.limit == 5

    def test_failure_exit_code(self):
        with patch("outreach.client.cli.SendLoop") as loop_cls, \
                patch("outreach.client.cli.setup_logging"), \
                patch("outreach.client.cli.signal.signal"):
            loop_cls.return_value.run.side_effect = SendLoopError("Campaign has no approved recipients")
            assert cli.main(["--campaign", "12", "--token", "tok"]) == 1
