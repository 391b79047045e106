"""
outreach-sender: send an approved campaign from a terminal.

    outreach-sender --campaign 12 --limit 20 --base-url http://localhost:8000/api/v1
"""
import os
import sys
import signal
import argparse
import logging

from outreach.client.api_client import DEFAULT_BASE_URL, OutreachAPIError, OutreachClient
from outreach.client.send_loop import SendLoop, SendLoopError
from outreach.core.logging import setup_logging

logger = logging.getLogger("outreach.sender")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Send an approved outreach campaign one email at a time")
    parser.add_argument("--campaign", type=int, required=True, help="Campaign id")
    parser.add_argument("--limit", type=int, default=None, help="Stop after this many emails")
    parser.add_argument("--base-url", default=os.getenv("OUTREACH_API_URL", DEFAULT_BASE_URL), help="API base URL")
    parser.add_argument("--username", default=os.getenv("OUTREACH_USERNAME"))
    parser.add_argument("--password", default=os.getenv("OUTREACH_PASSWORD"))
    parser.add_argument("--token", default=os.getenv("OUTREACH_TOKEN"))
    parser.add_argument("--max-sleep", type=float, default=None, help="Cap the wait between emails (testing only)")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(log_to_file=False)

    client = OutreachClient(base_url=args.base_url, token=args.token)
    try:
        if not args.token and args.username and args.password:
            client.login(args.username, args.password)

        loop = SendLoop(
            client,
            args.campaign,
            limit=args.limit,
            on_progress=lambda sent, total: print(f"[{sent}/{total}] sent"),
            max_sleep_seconds=args.max_sleep,
        )

        def _interrupt(signum, frame):
            logger.warning("Interrupted, pausing campaign after the current email")
            loop.stop()

        signal.signal(signal.SIGINT, _interrupt)
        result = loop.run()
        if result.stopped_reason == "aborted":
            client.pause_campaign(args.campaign)
    except (OutreachAPIError, SendLoopError) as e:
        logger.error(f"Send failed: {e}")
        return 1

    print(f"Done: {result.sent}/{result.total} sent, {result.skipped} skipped ({result.stopped_reason})")
    if result.retry_after_seconds:
        print(f"Retry after {result.retry_after_seconds}s")
    if result.error:
        print(f"Error: {result.error}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
