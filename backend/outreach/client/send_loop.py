"""
Interactive send loop: start the campaign without the server driver and
send one email at a time from here, honoring the server's recommended delay.

Skips are not all treated alike. Suppressed and no-address skips continue
at once with the next recipient. Window, daily-cap and in-flight skips end
the loop with ``stopped_reason`` and ``retry_after_seconds`` set, rather
than continuing without a pause: each would repeat until the clock moves,
and waiting them out is the server driver's job (start the campaign with
``schedule=True`` for that).
"""
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from outreach.client.api_client import OutreachAPIError, OutreachClient

logger = logging.getLogger(__name__)

STARTABLE_STATUSES = ("ready", "paused")

# skips that would repeat until the clock moves; the loop hands over instead of spinning
WAITING_SKIPS = ("outside_send_window", "daily_limit_reached", "send_in_flight")


class SendLoopError(Exception):
    pass


@dataclass
class SendLoopResult:
    sent: int = 0
    total: int = 0
    skipped: int = 0
    stopped_reason: str = ""
    error: Optional[str] = None
    retry_after_seconds: Optional[int] = None


class SendLoop:
    def __init__(
        self,
        client: OutreachClient,
        campaign_id: int,
        limit: Optional[int] = None,
        on_progress: Optional[Callable[[int, int], None]] = None,
        max_sleep_seconds: Optional[float] = None,
    ):
        self.client = client
        self.campaign_id = campaign_id
        self.limit = limit
        self.on_progress = on_progress
        self.max_sleep_seconds = max_sleep_seconds
        self.abort = threading.Event()

    def prepare(self) -> int:
        """Check the campaign can be sent and return how many emails this run will send."""
        campaign = self.client.get_campaign(self.campaign_id)
        status = campaign.get("status")
        if status not in STARTABLE_STATUSES:
            raise SendLoopError(f"Campaign is '{status}', it must be ready or paused")
        approved = (campaign.get("recipient_counts") or {}).get("approved", 0)
        if approved < 1:
            raise SendLoopError("Campaign has no approved recipients")
        return min(approved, self.limit) if self.limit else approved

    def _sleep(self, seconds: float):
        if self.max_sleep_seconds is not None:
            seconds = min(seconds, self.max_sleep_seconds)
        if seconds > 0:
            # wakes early when stop() is called
            self.abort.wait(seconds)

    def run(self) -> SendLoopResult:
        result = SendLoopResult(total=self.prepare())
        self.client.start_campaign(self.campaign_id, schedule=False)
        logger.info(f"Send loop for campaign {self.campaign_id}: {result.total} to send")

        while True:
            if self.abort.is_set():
                result.stopped_reason = "aborted"
                break
            if self.limit and result.sent >= self.limit:
                result.stopped_reason = "limit"
                break

            try:
                response = self.client.send_next(self.campaign_id)
            except OutreachAPIError as e:
                logger.error(f"Send loop for campaign {self.campaign_id} stopped: {e.error}")
                result.stopped_reason = "error"
                result.error = e.error
                break

            if response.get("completed"):
                result.stopped_reason = "completed"
                break

            if response.get("sent"):
                result.sent += 1
                if self.on_progress:
                    self.on_progress(result.sent, result.total)
                logger.info(f"Sent {result.sent}/{result.total} to {response.get('contact_email')}")
                self._sleep(response.get("recommended_delay_seconds") or 0)
                continue

            if response.get("skipped"):
                result.skipped += 1
                reason = response.get("reason")
                if reason in WAITING_SKIPS:
                    result.stopped_reason = reason
                    result.retry_after_seconds = response.get("retry_after_seconds")
                    break
                # suppressed or no address: straight on to the next one
                continue

            result.stopped_reason = "unexpected_response"
            result.error = str(response)
            break

        return result

    def stop(self):
        """Finish the in-flight request, then exit the loop."""
        self.abort.set()

    def pause(self) -> dict:
        """Stop the loop and mark the campaign paused."""
        self.stop()
        return self.client.pause_campaign(self.campaign_id)
