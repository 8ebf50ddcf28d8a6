"""
Mailbox activity insights computed from a sample of recent messages.
"""
import re
from collections import Counter
from typing import Iterable, List

from mailboard.core.models import EmailActivity, MessageSummary, SenderCount

_ADDRESS_RE = re.compile(r"<(.+?)>")


def sender_address(sender: str) -> str:
    """Bare address from "Name <addr>" (or the raw value when there are no brackets)."""
    match = _ADDRESS_RE.search(sender)
    return (match.group(1) if match else sender).strip().lower()


def analyze_activity(messages: Iterable[MessageSummary]) -> EmailActivity:
    """Messages per calendar day and the average over the days that had mail."""
    messages = list(messages)
    by_day = Counter(m.date.date().isoformat() for m in messages if m.date is not None)
    activity = EmailActivity(by_day=dict(sorted(by_day.items())), total_volume=len(messages))
    if by_day:
        activity.average_per_day = round(len(messages) / len(by_day))
    return activity


def top_senders(messages: Iterable[MessageSummary], limit: int = 5) -> List[SenderCount]:
    counts = Counter(sender_address(m.sender) for m in messages if m.sender)
    return [SenderCount(sender=sender, count=count) for sender, count in counts.most_common(limit)]
