"""Configuration loading for issuescope.

All user-editable settings (watches, actions, email sender, logging, metrics)
live in a single JSON file so watches can be changed without touching Python.
Secrets are read from files referenced by the config, or from environment
variables loaded through python-dotenv.
"""

from __future__ import annotations

import json
import os
import re
from typing import Any, Iterable, Optional

from dotenv import load_dotenv

from issuescope.core.config import (
    DEFAULT_METRICS_PORT,
    ActionSettings,
    Config,
    EmailActionConfig,
    EmailConfig,
    MetricsConfig,
    WatchDefinition,
)
from issuescope.core.matching import MatchCriteria, MatcherBuildError, build_matcher
from issuescope.core.models import ISSUE_STATES, IssueFilter, Repository

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))

# The config path can be overridden with --config or ISSUESCOPE_CONFIG.
DEFAULT_CONFIG_PATH = os.getenv("ISSUESCOPE_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))

TOKEN_ENV = "GITHUB_TOKEN"
SMTP_PASSWORD_ENV = "SMTP_PASSWORD"

SMTP_PORTS = (587, 465)

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


class ConfigError(ValueError):
    """Raised when the configuration file is missing, malformed or invalid."""


def get_absolute_path(path: str) -> str:
    """Expand ``~`` and return an absolute path."""

    return os.path.abspath(os.path.expanduser(path))


def read_first_line(path: str) -> str:
    """Return the first line of a file, stripped; used for secret files."""

    with open(get_absolute_path(path), "r", encoding="utf-8") as handle:
        return handle.readline().strip()


def parse_duration(value: Any) -> float:
    """Parse ``"5m"``, ``"1h30m"``, ``"500ms"`` or a number of seconds."""

    if isinstance(value, bool):
        raise ConfigError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"invalid duration: {value!r}")

    text = value.strip()
    try:
        return float(text)
    except ValueError:
        pass

    position = 0
    total = 0.0
    for part in _DURATION_PART.finditer(text):
        if part.start() != position:
            break
        total += float(part.group(1)) * _DURATION_UNITS[part.group(2)]
        position = part.end()
    if position != len(text) or position == 0:
        raise ConfigError(f"invalid duration: {value!r}")
    return total


def load_json_config(path: str) -> dict:
    """Load the JSON config file with a flat, user-friendly schema."""

    absolute = get_absolute_path(path)
    if not os.path.exists(absolute):
        raise ConfigError(f"Config file not found: {absolute}")

    try:
        with open(absolute, "r", encoding="utf-8") as handle:
            raw = json.load(handle)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file {absolute} is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigError(f"Config file {absolute} must contain a JSON object")
    return raw


def _string_list(raw: dict, key: str, context: str) -> tuple[str, ...]:
    values = raw.get(key) or []
    if not isinstance(values, list) or not all(isinstance(value, str) for value in values):
        raise ConfigError(f"{context}: '{key}' must be a list of strings")
    return tuple(values)


def _read_secret(file_path: Optional[str], env_name: str, what: str) -> str:
    if file_path:
        try:
            secret = read_first_line(file_path)
        except OSError as exc:
            raise ConfigError(f"unable to read {what} from file {file_path}: {exc}") from exc
    else:
        secret = os.getenv(env_name, "").strip()
    if not secret:
        source = f"file {file_path}" if file_path else f"${env_name}"
        raise ConfigError(f"{what} cannot be empty (read from {source})")
    return secret


def _parse_repos(raw_repos: Any, context: str) -> tuple[Repository, ...]:
    if not isinstance(raw_repos, list) or not raw_repos:
        raise ConfigError(f"{context}: expected at least one repository")
    repos = []
    for entry in raw_repos:
        if isinstance(entry, str) and entry.count("/") == 1:
            owner, _, name = entry.partition("/")
        elif isinstance(entry, dict):
            owner, name = entry.get("owner", ""), entry.get("name", "")
        else:
            raise ConfigError(f"{context}: invalid repository entry {entry!r}")
        if not owner or not name:
            raise ConfigError(f"{context}: repository needs both owner and name, got {entry!r}")
        repos.append(Repository(owner=owner, name=name))
    return tuple(repos)


def config_section(value: Any, what: str) -> dict:
    """Return a config object, treating a missing one as empty."""

    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{what} must be an object, got {value!r}")
    return value


def _parse_actions(raw_actions: Any, context: str) -> ActionSettings:
    raw_actions = config_section(raw_actions, f"{context}: actions")
    raw_subscribe = config_section(raw_actions.get("subscribe"), f"{context}: actions.subscribe")
    subscribe = bool(raw_subscribe.get("enabled", False))
    raw_email = config_section(raw_actions.get("email"), f"{context}: actions.email")
    email = EmailActionConfig(
        enabled=bool(raw_email.get("enabled", False)),
        send_to=str(raw_email.get("send_to", "")),
    )
    if email.enabled and not email.send_to:
        raise ConfigError(f"{context}: send_to cannot be empty if email action is enabled")
    return ActionSettings(subscribe=subscribe, email=email)


def parse_watch(raw: dict, default_interval: float) -> WatchDefinition:
    """Validate one watch entry and compile its matcher."""

    if not isinstance(raw, dict):
        raise ConfigError(f"watch entry must be an object, got {raw!r}")
    name = raw.get("name") or ""
    if not isinstance(name, str) or not name.strip():
        raise ConfigError("watch name cannot be empty")
    context = f"watch '{name}'"

    repos = _parse_repos(raw.get("repos"), context)
    criteria = MatchCriteria(
        selectors=_string_list(raw, "selectors", context),
        body_patterns=_string_list(raw, "body_regex", context),
        title_patterns=_string_list(raw, "title_regex", context),
        required_labels=_string_list(raw, "required_labels", context),
    )
    states = tuple(state.upper() for state in _string_list(raw, "states", context))
    if criteria.is_empty() and not states:
        raise ConfigError(f"{context}: expected at least one filter type")
    for state in states:
        if state not in ISSUE_STATES:
            raise ConfigError(f"{context}: unknown issue state {state}")

    try:
        matcher = build_matcher(criteria)
    except MatcherBuildError as exc:
        raise ConfigError(f"{context}: {exc}") from exc

    interval = parse_duration(raw["interval"]) if "interval" in raw else default_interval
    if interval <= 0:
        raise ConfigError(f"{context}: interval must be greater than zero")

    return WatchDefinition(
        name=name,
        repos=repos,
        criteria=criteria,
        matcher=matcher,
        issue_filter=IssueFilter(labels=_string_list(raw, "search_labels", context), states=states),
        interval=interval,
        actions=_parse_actions(raw.get("actions"), context),
    )


def _parse_email(raw_email: dict) -> EmailConfig:
    username = raw_email.get("username", "")
    if not username:
        raise ConfigError("email: username cannot be empty")
    host = raw_email.get("host", "")
    if not host:
        raise ConfigError("email: host cannot be empty")
    try:
        port = int(raw_email.get("port", 0))
    except (TypeError, ValueError) as exc:
        raise ConfigError("email: port must be a number") from exc
    if port not in SMTP_PORTS:
        raise ConfigError("email: port must be 587 (TLS) or 465 (SSL)")
    password_file = raw_email.get("password_file", "")
    password = _read_secret(password_file, SMTP_PASSWORD_ENV, "email password")
    return EmailConfig(
        username=username,
        password=password,
        host=host,
        port=port,
        password_file=password_file,
    )


def parse_metrics(raw_metrics: Any) -> MetricsConfig:
    """Validate the optional ``metrics`` section."""

    raw_metrics = config_section(raw_metrics, "metrics")
    try:
        port = int(raw_metrics.get("port", DEFAULT_METRICS_PORT))
    except (TypeError, ValueError) as exc:
        raise ConfigError("metrics: port must be a number") from exc
    return MetricsConfig(enabled=bool(raw_metrics.get("enabled", False)), port=port)


def _unique_names(watches: Iterable[WatchDefinition]) -> None:
    seen: set[str] = set()
    for watch in watches:
        if watch.name in seen:
            raise ConfigError(f"duplicate watch name '{watch.name}'")
        seen.add(watch.name)


def parse_config(raw: dict) -> Config:
    """Validate a raw config mapping and build a Config snapshot.

    Only local checks happen here; see validate_remote for the checks that
    need GitHub or the SMTP server.
    """

    load_dotenv()

    user = raw.get("user", "")
    if not user:
        raise ConfigError("user cannot be empty")
    token = _read_secret(raw.get("token_file"), TOKEN_ENV, "GitHub token")

    if "interval" not in raw:
        raise ConfigError("interval is required")
    interval = parse_duration(raw["interval"])
    if interval <= 0:
        raise ConfigError(f"interval must be greater than zero '{raw['interval']}'")

    raw_watches = raw.get("watches") or []
    if not isinstance(raw_watches, list) or not raw_watches:
        raise ConfigError("expected at least one watch")
    watches = tuple(parse_watch(entry, interval) for entry in raw_watches)
    _unique_names(watches)

    email = None
    if any(watch.actions.email.enabled for watch in watches):
        email = _parse_email(config_section(raw.get("email"), "email"))

    metrics = parse_metrics(raw.get("metrics"))

    return Config(
        user=user,
        token=token,
        interval=interval,
        watches=watches,
        email=email,
        metrics=metrics,
        logging=config_section(raw.get("logging"), "logging"),
    )


def load_config(path: str) -> Config:
    """Read and locally validate the config file at ``path``."""

    return parse_config(load_json_config(path))


async def validate_remote(config: Config, github, email_sender=None) -> None:
    """Check the config against GitHub and, when used, the SMTP server.

    ``github`` must offer ``whoami()`` and ``check_repository(repo)``;
    ``email_sender`` must offer ``test_connection()``.
    """

    user = await github.whoami()
    if user != config.user:
        raise ConfigError(f"configured user '{config.user}' does not match token user '{user}'")

    for watch in config.watches:
        for repo in watch.repos:
            await github.check_repository(repo)

    if config.uses_email() and email_sender is not None:
        await email_sender.test_connection()
