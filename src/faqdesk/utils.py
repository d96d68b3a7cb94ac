"""Utility functions for faqdesk."""

import logging
import sys
from typing import Any, Dict

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | int = "INFO") -> None:
    """Configure root logging to stderr with the standard faqdesk format."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def extract_chat_history(
    messages: list[Dict[str, Any]] | None,
    window_size: int = 6,
    exclude_current: bool = False,
) -> list[Dict[str, str]]:
    """
    Extract the recent conversation used for turn signals.

    Args:
        messages: Stored session messages (dicts with 'role' and 'content')
        window_size: Number of trailing messages to consider
        exclude_current: If True, drop the last message (the question being answered)

    Returns:
        List of message dicts with 'role' and 'content' keys, filtered to user/assistant only
    """
    if not messages or window_size <= 0:
        return []

    messages_to_process = messages[:-1] if exclude_current else messages

    chat_history = []
    for msg in messages_to_process[-window_size:]:
        role = (msg.get("role") or "").lower()
        if role in ("user", "assistant"):
            content = (msg.get("content") or "").strip()
            if content:
                chat_history.append({"role": role, "content": content})

    return chat_history
