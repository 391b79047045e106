"""
One-at-a-time review of generated emails.

The queue holds the campaign's ``generated`` recipients sorted by company
name. Approving or deleting removes the current item; moving with prev/next
saves the current edit only when the text actually changed.
"""
import logging
from typing import Any, Dict, List, Optional

from outreach.client.api_client import OutreachClient

logger = logging.getLogger(__name__)

NEXT_KEYS = ("ArrowRight", "ArrowDown")
PREV_KEYS = ("ArrowLeft", "ArrowUp")


def _company_name(item: Dict[str, Any]) -> str:
    company = item.get("company") or {}
    return (company.get("name") or "").lower()


class ReviewQueue:
    def __init__(self, client: OutreachClient, campaign_id: int):
        self.client = client
        self.campaign_id = campaign_id
        self.items: List[Dict[str, Any]] = []
        self.cursor = 0
        self.subject = ""
        self.body = ""
        self._loaded_subject = ""
        self._loaded_body = ""

    def load(self) -> int:
        recipients = self.client.list_recipients(self.campaign_id, status="generated")
        self.items = sorted(recipients, key=lambda r: (_company_name(r), r.get("id") or 0))
        self.cursor = 0
        self._load_current()
        return len(self.items)

    @property
    def current(self) -> Optional[Dict[str, Any]]:
        if not self.items:
            return None
        return self.items[self.cursor]

    def __len__(self):
        return len(self.items)

    def _load_current(self):
        item = self.current
        self.subject = (item or {}).get("subject") or ""
        self.body = (item or {}).get("body") or ""
        self._loaded_subject = self.subject
        self._loaded_body = self.body

    def edit(self, subject: Optional[str] = None, body: Optional[str] = None):
        if subject is not None:
            self.subject = subject
        if body is not None:
            self.body = body

    def is_dirty(self) -> bool:
        return self.subject != self._loaded_subject or self.body != self._loaded_body

    def save(self) -> bool:
        """Persist the current edit. Returns False when there was nothing to save."""
        item = self.current
        if item is None or not self.is_dirty():
            return False
        updated = self.client.update_recipient(
            self.campaign_id, item["id"], subject=self.subject, body=self.body
        )
        item.update(updated)
        self._loaded_subject = self.subject
        self._loaded_body = self.body
        logger.info(f"Saved edit for recipient {item['id']}")
        return True

    def _move(self, step: int):
        if not self.items:
            return
        self.save()
        self.cursor = max(0, min(len(self.items) - 1, self.cursor + step))
        self._load_current()

    def next(self):
        self._move(1)

    def prev(self):
        self._move(-1)

    def _remove_current(self):
        self.items.pop(self.cursor)
        if self.cursor >= len(self.items):
            self.cursor = max(0, len(self.items) - 1)
        self._load_current()

    def approve(self) -> Optional[Dict[str, Any]]:
        """Approve the current email (saving any edit first) and drop it from the queue."""
        item = self.current
        if item is None:
            return None
        self.save()
        updated = self.client.update_recipient(self.campaign_id, item["id"], approved=True)
        self._remove_current()
        return updated

    def delete(self) -> bool:
        item = self.current
        if item is None:
            return False
        self.client.delete_recipient(self.campaign_id, item["id"])
        self._remove_current()
        return True

    def handle_key(self, key: str, modal_open: bool = False, text_focused: bool = False) -> bool:
        """Keyboard navigation. Ignored while a dialog is open or the user is typing."""
        if modal_open or text_focused:
            return False
        if key in NEXT_KEYS:
            self.next()
            return True
        if key in PREV_KEYS:
            self.prev()
            return True
        return False
