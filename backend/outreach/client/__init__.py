"""
Operator-side helpers that drive the campaign API over HTTP.
"""
from outreach.client.api_client import OutreachClient, OutreachAPIError
from outreach.client.send_loop import SendLoop, SendLoopError, SendLoopResult
from outreach.client.review_queue import ReviewQueue

__all__ = [
    "OutreachClient",
    "OutreachAPIError",
    "SendLoop",
    "SendLoopError",
    "SendLoopResult",
    "ReviewQueue",
]
