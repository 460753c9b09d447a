"""GitHub client factory for issuescope.

Every configuration snapshot gets its own client so a rotated token takes
effect on the next reload without restarting the process.
"""

from __future__ import annotations

import logging
from typing import Optional

from issuescope.adapters.github_source import GitHubItemSource
from issuescope.core.config import Config
from issuescope.core.ports import MetricsPort

DEFAULT_RETRIES = 3
DEFAULT_TIMEOUT_SECONDS = 5 * 60


def build_github_source(
    config: Config,
    retries: int = DEFAULT_RETRIES,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    metrics: Optional[MetricsPort] = None,
) -> GitHubItemSource:
    """Create a GitHub GraphQL client authenticated with the config's token."""

    logging.getLogger(__name__).info("Initializing GitHub client for %s", config.user)
    return GitHubItemSource(config.token, retries=retries, timeout=timeout, metrics=metrics)
