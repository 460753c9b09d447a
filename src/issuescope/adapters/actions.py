"""Action adapters for matched items.

Both actions treat an item the viewer is already subscribed to as done, so
re-polling the same issue never repeats a side effect.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from issuescope.adapters.email_sender import SMTPEmailSender
from issuescope.adapters.github_source import GitHubItemSource
from issuescope.adapters.item_formatting import format_body, format_subject
from issuescope.core.config import Config, WatchDefinition
from issuescope.core.models import SUBSCRIPTION_SUBSCRIBED, CandidateItem
from issuescope.core.ports import ActionPort

LOGGER = logging.getLogger(__name__)


class SubscribeAction:
    """Subscribe the viewer to the matched issue."""

    name = "subscribe"

    def __init__(self, github: GitHubItemSource) -> None:
        self._github = github

    async def handle(self, item: CandidateItem) -> None:
        if item.is_subscribed:
            LOGGER.debug("Not subscribing to %s#%s, already subscribed", item.repo, item.number)
            return

        LOGGER.info("Subscribing to new issue %s#%s (%s)", item.repo, item.number, item.title)
        await self._github.set_subscription(item.id, SUBSCRIPTION_SUBSCRIBED)


class EmailAction:
    """Email the matched issue as JSON to a fixed recipient."""

    name = "email"

    def __init__(self, sender: SMTPEmailSender, to: str) -> None:
        self._sender = sender
        self._to = to

    async def handle(self, item: CandidateItem) -> None:
        if item.is_subscribed:
            LOGGER.debug("Not emailing %s#%s, already subscribed", item.repo, item.number)
            return

        subject = format_subject(item)
        LOGGER.info("Emailing %s#%s to %s", item.repo, item.number, self._to)
        message = self._sender.new_message(self._to, subject, format_body(item))
        await self._sender.send(message)


def build_actions(
    config: Config,
    watch: WatchDefinition,
    github: GitHubItemSource,
    sender: Optional[SMTPEmailSender] = None,
) -> List[ActionPort]:
    """Create the enabled actions for one watch, subscribe first."""

    actions: List[ActionPort] = []
    if watch.actions.subscribe:
        actions.append(SubscribeAction(github))
    if watch.actions.email.enabled:
        if sender is None:
            if config.email is None:
                raise ValueError(f"watch '{watch.name}' emails but no email sender is configured")
            sender = SMTPEmailSender(config.email)
        actions.append(EmailAction(sender, watch.actions.email.send_to))
    return actions
