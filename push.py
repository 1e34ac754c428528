"""
Expo push notifications.

Messages are POSTed to the Expo push endpoint in chunks of at most 100.
Failures are logged and never raised to the caller.
"""

import logging
import re
from typing import Any, Dict, Iterator, List

import httpx

import config

logger = logging.getLogger(__name__)

PUSH_TOKEN_RE = re.compile(r"^(ExponentPushToken|ExpoPushToken)\[.+\]$")
CHUNK_SIZE = 100


def is_push_token(token: Any) -> bool:
    return isinstance(token, str) and bool(PUSH_TOKEN_RE.match(token))


def chunk_messages(messages: List[Dict[str, Any]], size: int = CHUNK_SIZE) -> Iterator[List[Dict[str, Any]]]:
    for i in range(0, len(messages), size):
        yield messages[i:i + size]


def _headers() -> Dict[str, str]:
    headers = {"Accept": "application/json", "Content-Type": "application/json"}
    if config.EXPO_ACCESS_TOKEN:
        headers["Authorization"] = f"Bearer {config.EXPO_ACCESS_TOKEN}"
    return headers


def send_push_notifications(messages: List[Dict[str, Any]]) -> int:
    """Send messages, return the number of tickets reported ok."""
    messages = [m for m in messages if is_push_token(m.get("to"))]
    if not messages:
        return 0

    ok = 0
    with httpx.Client(timeout=30.0) as http_client:
        for chunk in chunk_messages(messages):
            try:
                response = http_client.post(config.EXPO_PUSH_URL, json=chunk, headers=_headers())
                response.raise_for_status()
                tickets = response.json().get("data", [])
            except (httpx.HTTPError, ValueError) as e:
                logger.error(f"Push notification request failed: {e}")
                continue

            for ticket in tickets:
                if ticket.get("status") == "ok":
                    ok += 1
                    logger.info(f"Push notification sent: {ticket.get('id')}")
                else:
                    logger.error(f"Push notification error: {ticket.get('message')} {ticket.get('details')}")
    return ok
