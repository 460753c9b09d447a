"""Structured-attribute selectors over candidate items (core domain).

Selectors follow the Kubernetes label selector syntax and are evaluated
against a flattened, string-keyed view of a CandidateItem. Nested fields use
dot-notation, so the repository name is addressed as ``repo.name``.

Supported requirements, joined by commas (logical AND):
- ``key=value``, ``key==value``, ``key!=value``
- ``key in (a,b)``, ``key notin (a,b)``
- ``key`` (exists), ``!key`` (does not exist)
- ``key>n``, ``key<n`` (integer comparison)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Mapping, Tuple

from issuescope.core.models import CandidateItem

# The flattened view is built by hand, so this set must stay in sync with
# item_as_label_set below.
ITEM_FIELDS = frozenset(
    {
        "type",
        "repo.owner",
        "repo.name",
        "author.login",
        "body",
        "number",
        "title",
        "state",
        "subscription",
    }
)

OP_EQUALS = "="
OP_DOUBLE_EQUALS = "=="
OP_NOT_EQUALS = "!="
OP_IN = "in"
OP_NOT_IN = "notin"
OP_EXISTS = "exists"
OP_DOES_NOT_EXIST = "!"
OP_GREATER_THAN = ">"
OP_LESS_THAN = "<"

_SPECIAL_CHARS = "!=(),<>"


class SelectorSyntaxError(ValueError):
    """Raised when a selector string cannot be parsed."""


def item_as_label_set(item: CandidateItem) -> dict[str, str]:
    """Flatten a CandidateItem into the string map selectors are matched on."""

    return {
        "type": item.type,
        "repo.owner": item.repo.owner,
        "repo.name": item.repo.name,
        "author.login": item.author_login,
        "body": item.body,
        "number": str(item.number),
        "title": item.title,
        "state": item.state,
        "subscription": item.subscription,
    }


def is_item_field(key: str) -> bool:
    return key in ITEM_FIELDS


@dataclass(frozen=True)
class Requirement:
    """One comparison inside a selector."""

    key: str
    operator: str
    values: Tuple[str, ...] = ()

    def matches(self, labels: Mapping[str, str]) -> bool:
        present = self.key in labels
        if self.operator in (OP_EQUALS, OP_DOUBLE_EQUALS, OP_IN):
            return present and labels[self.key] in self.values
        if self.operator in (OP_NOT_EQUALS, OP_NOT_IN):
            return not present or labels[self.key] not in self.values
        if self.operator == OP_EXISTS:
            return present
        if self.operator == OP_DOES_NOT_EXIST:
            return not present
        if self.operator in (OP_GREATER_THAN, OP_LESS_THAN):
            if not present:
                return False
            try:
                actual = int(labels[self.key])
                wanted = int(self.values[0])
            except ValueError:
                return False
            if self.operator == OP_GREATER_THAN:
                return actual > wanted
            return actual < wanted
        raise ValueError(f"Unsupported selector operator: {self.operator}")


@dataclass(frozen=True)
class Selector:
    """A parsed selector; an empty requirement list selects everything."""

    text: str
    requirements: Tuple[Requirement, ...]

    def matches(self, labels: Mapping[str, str]) -> bool:
        return all(requirement.matches(labels) for requirement in self.requirements)

    def keys(self) -> set[str]:
        return {requirement.key for requirement in self.requirements}

    def __str__(self) -> str:
        return self.text


def _tokenize(text: str) -> List[str]:
    tokens: List[str] = []
    index = 0
    while index < len(text):
        char = text[index]
        if char.isspace():
            index += 1
            continue
        two = text[index : index + 2]
        if two in ("==", "!="):
            tokens.append(two)
            index += 2
            continue
        if char in _SPECIAL_CHARS:
            tokens.append(char)
            index += 1
            continue
        start = index
        while index < len(text) and not text[index].isspace() and text[index] not in _SPECIAL_CHARS:
            index += 1
        tokens.append(text[start:index])
    return tokens


def _is_identifier(token: str) -> bool:
    return bool(token) and token[0] not in _SPECIAL_CHARS and token not in ("==", "!=")


class _Parser:
    def __init__(self, text: str) -> None:
        self._text = text
        self._tokens = _tokenize(text)
        self._pos = 0

    def _peek(self) -> str | None:
        if self._pos < len(self._tokens):
            return self._tokens[self._pos]
        return None

    def _next(self) -> str | None:
        token = self._peek()
        if token is not None:
            self._pos += 1
        return token

    def _error(self, message: str) -> SelectorSyntaxError:
        return SelectorSyntaxError(f"{message} in selector '{self._text}'")

    def parse(self) -> Tuple[Requirement, ...]:
        requirements: List[Requirement] = []
        if self._peek() is None:
            return ()
        while True:
            requirements.append(self._requirement())
            token = self._next()
            if token is None:
                return tuple(requirements)
            if token != ",":
                raise self._error(f"expected ',' but found '{token}'")

    def _requirement(self) -> Requirement:
        token = self._next()
        if token == "!":
            key = self._next()
            if key is None or not _is_identifier(key):
                raise self._error("expected a key after '!'")
            return Requirement(key=key, operator=OP_DOES_NOT_EXIST)
        if token is None or not _is_identifier(token):
            raise self._error(f"expected a key but found '{token}'")
        key = token

        operator = self._peek()
        if operator is None or operator == ",":
            return Requirement(key=key, operator=OP_EXISTS)
        self._pos += 1

        if operator in (OP_EQUALS, OP_DOUBLE_EQUALS, OP_NOT_EQUALS):
            return Requirement(key=key, operator=operator, values=(self._single_value(),))
        if operator in (OP_GREATER_THAN, OP_LESS_THAN):
            value = self._single_value()
            try:
                int(value)
            except ValueError as exc:
                raise self._error(f"value '{value}' for '{operator}' must be an integer") from exc
            return Requirement(key=key, operator=operator, values=(value,))
        if operator in (OP_IN, OP_NOT_IN):
            return Requirement(key=key, operator=operator, values=self._value_set())
        raise self._error(f"unknown operator '{operator}'")

    def _single_value(self) -> str:
        token = self._peek()
        # "key=" is legal and compares against the empty string.
        if token is None or token == ",":
            return ""
        if not _is_identifier(token):
            raise self._error(f"expected a value but found '{token}'")
        self._pos += 1
        return token

    def _value_set(self) -> Tuple[str, ...]:
        if self._next() != "(":
            raise self._error("expected '(' to open a value set")
        values: List[str] = []
        while True:
            token = self._next()
            if token is None:
                raise self._error("unterminated value set")
            if token == ")":
                break
            if token == ",":
                continue
            if not _is_identifier(token):
                raise self._error(f"unexpected '{token}' in value set")
            values.append(token)
        if not values:
            raise self._error("value set cannot be empty")
        return tuple(values)


def parse_selector(text: str) -> Selector:
    """Parse a selector string; raises SelectorSyntaxError on bad input."""

    return Selector(text=text.strip(), requirements=_Parser(text).parse())


def unknown_keys(selectors: Iterable[Selector]) -> List[str]:
    """Return selector keys that are not part of the flattened item view."""

    unknown: List[str] = []
    for selector in selectors:
        for key in sorted(selector.keys()):
            if not is_item_field(key) and key not in unknown:
                unknown.append(key)
    return unknown
