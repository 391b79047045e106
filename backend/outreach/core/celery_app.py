import logging

from celery import Celery, Task
from celery.signals import worker_process_init
from kombu import Queue
from outreach.core.config import settings
from outreach.core.logging import init_logging

logger = logging.getLogger(__name__)

# one queue per workload: send ticks, LLM batches, everything else
QUEUES = ("default", "sending", "generation")

celery_app = Celery(
    "outreach",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["outreach.tasks.sending", "outreach.tasks.generation"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # a tick lost with its worker is redelivered
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=24 * 3600,

    broker_connection_retry_on_startup=True,

    # send ticks carry long countdowns
    worker_prefetch_multiplier=1,
    broker_pool_limit=10,

    # countdowns up to the longest configured delay must not be redelivered early
    broker_transport_options={"visibility_timeout": 6 * 3600},

    task_queues=tuple(Queue(name, routing_key=name) for name in QUEUES),
    task_default_queue="default",
    task_routes={
        "outreach.tasks.sending.drive_campaign_send": {"queue": "sending"},
        "outreach.tasks.generation.generate_campaign_content": {"queue": "generation"},
    },

    worker_send_task_events=True,
    task_track_started=True,
)


class OutreachTask(Task):
    """Retries broker/network hiccups with backoff and logs each outcome."""

    autoretry_for = (ConnectionError, TimeoutError)
    retry_backoff = True
    retry_backoff_max = 600
    retry_jitter = True

    def _describe(self, task_id) -> str:
        return f"{self.name}[{task_id}]"

    def on_success(self, retval, task_id, args, kwargs):
        logger.info(f"{self._describe(task_id)} finished: {retval}")
        super().on_success(retval, task_id, args, kwargs)

    def on_retry(self, exc, task_id, args, kwargs, einfo):
        logger.warning(f"{self._describe(task_id)} will retry ({type(exc).__name__}: {exc}) args={args}")
        super().on_retry(exc, task_id, args, kwargs, einfo)

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(f"{self._describe(task_id)} gave up args={args} kwargs={kwargs}: {exc}\n{einfo}")
        super().on_failure(exc, task_id, args, kwargs, einfo)


celery_app.Task = OutreachTask


@worker_process_init.connect
def _init_worker_logging(**kwargs):
    init_logging()
