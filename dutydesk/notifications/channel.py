"""
Outbound chat-channel notifications (Discord bot message).

Why:
    Staff follow submitted tests in a report channel. Delivery is best effort:
    a single attempt with a timeout, failures are logged and never reach the
    end user.
"""
from __future__ import annotations

import logging

# Small indirection to ease monkeypatching in tests
import requests as http

logger = logging.getLogger("dutydesk.notifications.channel")


def http_post_json(url: str, payload: dict, headers: dict, timeout: float):
    return http.post(url, json=payload, headers=headers, timeout=timeout)


def format_submission(submission: dict) -> str:
    tester = submission.get("userId")
    mention = f"<@{tester}>" if tester else "-"
    lines = [
        f"**Test {submission.get('testType', '?')}**: {submission.get('result', '?')}",
        f"Tester: {mention} (`{submission.get('testerCode', '')}`)",
        f"ID: `{submission.get('id', '')}`",
    ]
    return "\n".join(lines)


class ChannelNotifier:
    def __init__(self, *, api_base: str, bot_token: str, channel_id: str | None, timeout_seconds: float = 5) -> None:
        self._api_base = api_base.rstrip("/")
        self._bot_token = bot_token
        self._channel_id = (channel_id or "").strip() or None
        self._timeout = timeout_seconds

    @property
    def enabled(self) -> bool:
        return bool(self._channel_id and self._bot_token)

    def send(self, content: str) -> bool:
        """Post `content` to the report channel; returns delivery success."""
        if not self.enabled:
            return False
        url = f"{self._api_base}/channels/{self._channel_id}/messages"
        headers = {"Authorization": f"Bot {self._bot_token}"}
        try:
            resp = http_post_json(url, {"content": content[:2000]}, headers, self._timeout)
        except Exception as exc:
            logger.warning("notify.failed error=%s", exc.__class__.__name__)
            return False
        if resp.status_code not in (200, 201):
            logger.warning("notify.rejected status=%s", resp.status_code)
            return False
        return True

    def notify_submission(self, submission: dict) -> bool:
        return self.send(format_submission(submission))


__all__ = ["ChannelNotifier", "format_submission"]
