# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

"""Detection of assistant-directed messages."""

import re

_LEADING_MENTION = re.compile(r"^\s*@ai\b[\s:,]*", re.IGNORECASE)
_INLINE_PREFIX = re.compile(r"\bai:\s*", re.IGNORECASE)


def is_message_for_ai(content: str) -> bool:
    """True when the message starts with "@ai" or contains the token "ai:" (case-insensitive)."""
    text = content or ""
    return bool(_LEADING_MENTION.match(text) or _INLINE_PREFIX.search(text))


def extract_ai_query(content: str) -> str:
    """Strip the trigger token and surrounding whitespace."""
    text = content or ""
    stripped, count = _LEADING_MENTION.subn("", text, count=1)
    if not count:
        stripped = _INLINE_PREFIX.sub("", text, count=1)
    return stripped.strip()
