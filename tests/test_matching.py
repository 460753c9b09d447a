from __future__ import annotations

import pytest

from issuescope.core.matching import MatchCriteria, MatcherBuildError, build_matcher
from issuescope.core.models import CandidateItem, Repository


def _item(**overrides) -> CandidateItem:
    values = dict(
        id="I_1",
        repo=Repository(owner="owner", name="repo"),
        number=1,
        title="Crash When Saving",
        state="OPEN",
        subscription="UNSUBSCRIBED",
        author_login="actor",
        labels=("bug", "help wanted"),
        body="Steps To Reproduce: open the editor",
    )
    values.update(overrides)
    return CandidateItem(**values)


def test_empty_matcher_matches_everything() -> None:
    matcher = build_matcher(MatchCriteria())
    assert len(matcher) == 0
    assert matcher.evaluate(_item()).matched
    assert not matcher.requirements.any


def test_all_predicates_pass() -> None:
    matcher = build_matcher(
        MatchCriteria(
            selectors=("repo.owner==owner",),
            body_patterns=("steps to reproduce",),
            title_patterns=("crash",),
            required_labels=("bug",),
        )
    )
    result = matcher.evaluate(_item())
    assert result.matched
    assert result.reason == ""


def test_failing_predicate_reports_reason() -> None:
    matcher = build_matcher(MatchCriteria(required_labels=("bug", "security")))
    result = matcher.evaluate(_item())
    assert not result.matched
    assert not result
    assert result.reason == "did not match requiredLabel: 'security'"


def test_first_failure_wins_in_registration_order() -> None:
    matcher = build_matcher(
        MatchCriteria(
            selectors=("state==CLOSED",),
            body_patterns=("nothing like this",),
            title_patterns=("nothing like this",),
            required_labels=("missing",),
        )
    )
    assert matcher.evaluate(_item()).reason == "did not match selector: 'state==CLOSED'"

    matcher = build_matcher(
        MatchCriteria(
            body_patterns=("nothing like this",),
            title_patterns=("also absent",),
        )
    )
    assert matcher.evaluate(_item()).reason == "did not match bodyRegex: 'nothing like this'"


def test_regexes_search_lowercased_text() -> None:
    matcher = build_matcher(MatchCriteria(title_patterns=("^crash when",)))
    assert matcher.evaluate(_item()).matched

    matcher = build_matcher(MatchCriteria(title_patterns=("Crash",)))
    result = matcher.evaluate(_item())
    assert result.reason == "did not match titleRegex: 'Crash'"


def test_requirements_follow_predicates() -> None:
    title_only = build_matcher(MatchCriteria(title_patterns=("crash",)))
    assert not title_only.requires_body
    assert not title_only.requires_labels

    body = build_matcher(MatchCriteria(body_patterns=("x",)))
    assert body.requires_body
    assert not body.requires_labels

    labels = build_matcher(MatchCriteria(required_labels=("bug",)))
    assert labels.requires_labels
    assert not labels.requires_body

    body_selector = build_matcher(MatchCriteria(selectors=("body",)))
    assert body_selector.requires_body


def test_body_pattern_flips_only_body_requirement() -> None:
    selector_only = build_matcher(MatchCriteria(selectors=("state==OPEN",)))
    assert not selector_only.requires_body
    assert not selector_only.requires_labels

    with_body = build_matcher(
        MatchCriteria(selectors=("state==OPEN",), body_patterns=("steps to reproduce",))
    )
    assert with_body.requires_body
    assert not with_body.requires_labels


def test_prefilter_skips_lazy_predicates() -> None:
    matcher = build_matcher(
        MatchCriteria(title_patterns=("crash",), required_labels=("bug",))
    )
    bare = _item(labels=(), body="")
    assert matcher.prefilter(bare).matched
    assert not matcher.evaluate(bare).matched

    rejected = matcher.prefilter(_item(title="feature request"))
    assert rejected.reason == "did not match titleRegex: 'crash'"


def test_selectors_see_flattened_item_fields() -> None:
    matcher = build_matcher(
        MatchCriteria(selectors=("type==issue,author.login in (actor, other)", "number<10"))
    )
    assert matcher.evaluate(_item()).matched
    assert not matcher.evaluate(_item(number=42)).matched


@pytest.mark.parametrize(
    "criteria, message",
    [
        (MatchCriteria(selectors=("state in OPEN",)), "unable to parse selector"),
        (MatchCriteria(selectors=("milestone==v1",)), "unknown key 'milestone' in selector"),
        (MatchCriteria(body_patterns=("(unclosed",)), "unable to compile regex '(unclosed'"),
        (MatchCriteria(title_patterns=("[",)), "unable to compile regex '['"),
    ],
)
def test_invalid_criteria_are_rejected(criteria: MatchCriteria, message: str) -> None:
    with pytest.raises(MatcherBuildError) as excinfo:
        build_matcher(criteria)
    assert message in str(excinfo.value)
