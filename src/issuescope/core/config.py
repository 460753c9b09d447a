"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Tuple

from issuescope.core.matching import MatchCriteria, Matcher
from issuescope.core.models import IssueFilter, Repository

DEFAULT_METRICS_PORT = 2112


@dataclass(frozen=True)
class EmailActionConfig:
    """Email action switch and recipient for one watch."""

    enabled: bool = False
    send_to: str = ""


@dataclass(frozen=True)
class ActionSettings:
    """Actions enabled for one watch."""

    subscribe: bool = False
    email: EmailActionConfig = field(default_factory=EmailActionConfig)

    def enabled_names(self) -> Tuple[str, ...]:
        names = []
        if self.subscribe:
            names.append("subscribe")
        if self.email.enabled:
            names.append("email")
        return tuple(names)


@dataclass(frozen=True)
class WatchDefinition:
    """A validated watch with its matcher already compiled."""

    name: str
    repos: Tuple[Repository, ...]
    criteria: MatchCriteria
    matcher: Matcher = field(compare=False)
    issue_filter: IssueFilter
    interval: float
    actions: ActionSettings


@dataclass(frozen=True)
class EmailConfig:
    """SMTP sender settings used by the email action."""

    username: str
    password: str = field(repr=False)
    host: str
    port: int
    password_file: str = ""


@dataclass(frozen=True)
class MetricsConfig:
    enabled: bool = False
    port: int = DEFAULT_METRICS_PORT


@dataclass(frozen=True)
class Config:
    """One fully validated configuration snapshot."""

    user: str
    token: str = field(repr=False)
    interval: float
    watches: Tuple[WatchDefinition, ...]
    email: Optional[EmailConfig] = None
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    logging: dict = field(default_factory=dict, compare=False)

    def get_watch(self, name: str) -> Optional[WatchDefinition]:
        for watch in self.watches:
            if watch.name == name:
                return watch
        return None

    def uses_email(self) -> bool:
        return any(watch.actions.email.enabled for watch in self.watches)
