"""Predicate compilation and matching logic (core domain).

A Matcher is an ordered list of independent predicates compiled from one
watch's criteria. Evaluation is a short-circuit AND that reports the first
failing predicate, and an empty list always matches.

Predicates are registered in a fixed order: structured selectors, body
patterns, title patterns, then required labels. The order decides which
reason is surfaced when several predicates would fail.

The Matcher also reports which lazily fetched fields its predicates read, so
item sources only pay for body/label sub-queries when something needs them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Callable, Iterable, List, Tuple

from issuescope.core.models import CandidateItem, MatchResult
from issuescope.core.selectors import (
    Selector,
    SelectorSyntaxError,
    item_as_label_set,
    parse_selector,
    unknown_keys,
)

FIELD_BODY = "body"
FIELD_LABELS = "labels"


class MatcherBuildError(ValueError):
    """Raised when match criteria cannot be compiled."""


@dataclass(frozen=True)
class MatchCriteria:
    """Raw match criteria, kept in configuration order."""

    selectors: Tuple[str, ...] = ()
    body_patterns: Tuple[str, ...] = ()
    title_patterns: Tuple[str, ...] = ()
    required_labels: Tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return not (self.selectors or self.body_patterns or self.title_patterns or self.required_labels)


@dataclass(frozen=True)
class FieldRequirements:
    """Lazily fetched fields a matcher needs populated before evaluation."""

    body: bool = False
    labels: bool = False

    @property
    def any(self) -> bool:
        return self.body or self.labels


@dataclass(frozen=True)
class Predicate:
    """A single pass/fail test built from one configured criterion."""

    name: str
    test: Callable[[CandidateItem], bool] = field(compare=False)
    needs: frozenset = frozenset()

    def __call__(self, item: CandidateItem) -> bool:
        return self.test(item)


def selector_predicate(selector: Selector) -> Predicate:
    """Wrap a parsed selector as a predicate.

    A selector that reads ``body`` requires the body too: item sources fetch
    bodies lazily, and without the flag it would only ever see "".
    """

    needs = frozenset({FIELD_BODY}) if FIELD_BODY in selector.keys() else frozenset()
    return Predicate(
        name=f"selector: '{selector}'",
        test=lambda item: selector.matches(item_as_label_set(item)),
        needs=needs,
    )


def body_pattern_predicate(pattern: re.Pattern) -> Predicate:
    return Predicate(
        name=f"bodyRegex: '{pattern.pattern}'",
        test=lambda item: pattern.search(item.body.lower()) is not None,
        needs=frozenset({FIELD_BODY}),
    )


def title_pattern_predicate(pattern: re.Pattern) -> Predicate:
    return Predicate(
        name=f"titleRegex: '{pattern.pattern}'",
        test=lambda item: pattern.search(item.title.lower()) is not None,
    )


def required_label_predicate(label: str) -> Predicate:
    return Predicate(
        name=f"requiredLabel: '{label}'",
        test=lambda item: label in item.labels,
        needs=frozenset({FIELD_LABELS}),
    )


class Matcher:
    """Ordered predicate list with precomputed field requirements."""

    def __init__(self, predicates: Iterable[Predicate] = ()) -> None:
        self._predicates: Tuple[Predicate, ...] = tuple(predicates)
        needs: set[str] = set()
        for predicate in self._predicates:
            needs.update(predicate.needs)
        self._requirements = FieldRequirements(
            body=FIELD_BODY in needs,
            labels=FIELD_LABELS in needs,
        )

    @property
    def predicates(self) -> Tuple[Predicate, ...]:
        return self._predicates

    @property
    def requirements(self) -> FieldRequirements:
        return self._requirements

    @property
    def requires_body(self) -> bool:
        return self._requirements.body

    @property
    def requires_labels(self) -> bool:
        return self._requirements.labels

    def evaluate(self, item: CandidateItem) -> MatchResult:
        """Run every predicate in order, stopping at the first failure."""

        for predicate in self._predicates:
            if not predicate(item):
                return MatchResult(matched=False, reason=f"did not match {predicate.name}")
        return MatchResult(matched=True)

    def prefilter(self, item: CandidateItem) -> MatchResult:
        """Evaluate only predicates that read always-present fields.

        A failure here is final; a pass still needs a full evaluate() once
        the lazy fields are populated.
        """

        for predicate in self._predicates:
            if predicate.needs:
                continue
            if not predicate(item):
                return MatchResult(matched=False, reason=f"did not match {predicate.name}")
        return MatchResult(matched=True)

    def __len__(self) -> int:
        return len(self._predicates)


def _compile_pattern(raw: str) -> re.Pattern:
    try:
        return re.compile(raw)
    except re.error as exc:
        raise MatcherBuildError(f"unable to compile regex '{raw}': {exc}") from exc


def build_matcher(criteria: MatchCriteria) -> Matcher:
    """Compile criteria into a Matcher.

    Bad selector syntax, selector keys outside the flattened item view and
    invalid regular expressions are rejected here so nothing fails later at
    evaluation time.
    """

    selectors: List[Selector] = []
    for raw in criteria.selectors:
        try:
            selectors.append(parse_selector(raw))
        except SelectorSyntaxError as exc:
            raise MatcherBuildError(f"unable to parse selector '{raw}': {exc}") from exc

    unknown = unknown_keys(selectors)
    if unknown:
        raise MatcherBuildError(f"unknown key '{unknown[0]}' in selector")

    predicates: List[Predicate] = [selector_predicate(selector) for selector in selectors]
    predicates.extend(body_pattern_predicate(_compile_pattern(raw)) for raw in criteria.body_patterns)
    predicates.extend(title_pattern_predicate(_compile_pattern(raw)) for raw in criteria.title_patterns)
    predicates.extend(required_label_predicate(label) for label in criteria.required_labels)
    return Matcher(predicates)
