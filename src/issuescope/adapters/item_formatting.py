"""Shared item formatting helpers.

Keeping formatting here prevents drift between the email action and the
``list`` command output.
"""

from __future__ import annotations

import json

from issuescope.core.models import ITEM_TYPE_ISSUE, CandidateItem

SUBJECT_PREFIX = "issuescope"


def format_subject(item: CandidateItem) -> str:
    """Return ``issuescope: owner/repo#12: title`` for issues."""

    subject = f"{SUBJECT_PREFIX}: {item.repo.owner}/{item.repo.name}"
    if item.type == ITEM_TYPE_ISSUE:
        return f"{subject}#{item.number}: {item.title}"
    return f"{subject}: unknown"


def format_body(item: CandidateItem) -> str:
    """Return the item as indented JSON, the plain-text email body."""

    return json.dumps(item.to_dict(), indent="\t", ensure_ascii=False)


def format_items(items: list[CandidateItem]) -> str:
    return json.dumps([item.to_dict() for item in items], ensure_ascii=False)
