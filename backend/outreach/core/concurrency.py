import uuid
import logging
from contextlib import contextmanager
from typing import Optional

import redis

from outreach.core.config import settings

logger = logging.getLogger(__name__)

_redis_client = None


def get_redis():
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


class CampaignSendLock:
    """
    Non-blocking per-campaign mutex in Redis.

    Only one send driver may hold it; the key expires on its own if the
    holder dies, and release only deletes the key if we still own it.
    """

    RELEASE_SCRIPT = """
    if redis.call('get', KEYS[1]) == ARGV[1] then
        return redis.call('del', KEYS[1])
    else
        return 0
    end
    """

    def __init__(self, client, campaign_id: int, timeout: int = 120):
        self.client = client
        self.name = f"campaign_send_lock:{campaign_id}"
        self.timeout = timeout
        self.token: Optional[str] = None

    def acquire(self) -> bool:
        token = uuid.uuid4().hex
        if self.client.set(self.name, token, nx=True, ex=self.timeout):
            self.token = token
            return True
        return False

    def release(self):
        if self.token is None:
            return
        script = self.client.register_script(self.RELEASE_SCRIPT)
        script(keys=[self.name], args=[self.token])
        self.token = None

    @contextmanager
    def hold(self):
        """Yields True when the lock was taken, False when someone else has it."""
        acquired = self.acquire()
        if not acquired:
            logger.info(f"Send lock {self.name} is held by another worker")
        try:
            yield acquired
        finally:
            if acquired:
                self.release()


def get_campaign_send_lock(campaign_id: int, timeout: Optional[int] = None) -> CampaignSendLock:
    return CampaignSendLock(get_redis(), campaign_id, timeout or settings.SEND_LOCK_TIMEOUT)


# The id of the one scheduled send tick allowed to run for a campaign.
# Starting a campaign again replaces it, which retires any older chain.
_DRIVER_PREFIX = "campaign_send_driver:"
DRIVER_TTL_SECONDS = 2 * 24 * 3600


def set_send_driver(campaign_id: int, task_id: str) -> None:
    get_redis().set(f"{_DRIVER_PREFIX}{campaign_id}", task_id, ex=DRIVER_TTL_SECONDS)


def get_send_driver(campaign_id: int) -> Optional[str]:
    return get_redis().get(f"{_DRIVER_PREFIX}{campaign_id}")


def clear_send_driver(campaign_id: int) -> None:
    get_redis().delete(f"{_DRIVER_PREFIX}{campaign_id}")
