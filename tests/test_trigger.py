from __future__ import annotations

import pytest

from zebraci.errors import PipelineError
from zebraci.model import FULL_PATH, LAST_SEGMENT, PushEvent
from zebraci.trigger import (
    branch_name,
    collapsed_branch,
    derive_substitution_identifier,
    event_from_env,
    event_from_payload,
)


@pytest.mark.parametrize(
    "ref, expected",
    [
        ("refs/heads/main", "main"),
        ("refs/heads/feature/X", "X"),
        ("refs/tags/v1.0.0", "v1.0.0"),
        ("main", "main"),
    ],
)
def test_branch_name_keeps_final_segment(ref, expected):
    assert branch_name(ref) == expected


def test_feature_branch_last_segment():
    event = PushEvent(repository="org/zebra", ref="refs/heads/feature/X")
    assert derive_substitution_identifier(event) == "org/zebra/x"


def test_feature_branch_full_path():
    event = PushEvent(repository="org/zebra", ref="refs/heads/feature/X")
    assert derive_substitution_identifier(event, FULL_PATH) == "org/zebra/feature-x"


def test_identifier_is_lowercase():
    event = PushEvent(repository="ZcashFoundation/Zebra", ref="refs/heads/Main")
    ident = derive_substitution_identifier(event)
    assert ident == "zcashfoundation/zebra/main"
    assert ident == ident.lower()


@pytest.mark.parametrize("mode", [LAST_SEGMENT, FULL_PATH])
@pytest.mark.parametrize(
    "ref",
    ["refs/heads/main", "refs/heads/a/b/c", "refs/heads/Fix/Deep/Nesting", "refs/tags/v2"],
)
def test_identifier_has_only_repository_and_separator_slashes(mode, ref):
    ident = derive_substitution_identifier(PushEvent(repository="org/zebra", ref=ref), mode)
    assert ident.count("/") == 2
    assert ident.startswith("org/zebra/")


def test_collapse_is_reported_only_when_information_is_dropped():
    assert collapsed_branch(PushEvent("org/zebra", "refs/heads/feature/foo")) == "feature/foo"
    assert collapsed_branch(PushEvent("org/zebra", "refs/tags/v1")) == "tags/v1"
    assert collapsed_branch(PushEvent("org/zebra", "refs/heads/main")) is None
    assert collapsed_branch(PushEvent("org/zebra", "refs/heads/feature/foo"), FULL_PATH) is None


def test_collapsed_branches_share_identifier():
    a = derive_substitution_identifier(PushEvent("org/zebra", "refs/heads/feature/foo"))
    b = derive_substitution_identifier(PushEvent("org/zebra", "refs/heads/fix/foo"))
    assert a == b == "org/zebra/foo"


def test_unknown_mode_rejected():
    with pytest.raises(ValueError):
        derive_substitution_identifier(PushEvent("org/zebra", "refs/heads/main"), "bogus")


def test_event_from_env():
    event = event_from_env(
        {"GITHUB_REPOSITORY": "org/zebra", "GITHUB_REF": "refs/heads/main", "GITHUB_SHA": "abc123"}
    )
    assert event == PushEvent(repository="org/zebra", ref="refs/heads/main", sha="abc123")


def test_event_from_env_requires_repository_and_ref():
    with pytest.raises(PipelineError) as exc:
        event_from_env({"GITHUB_REF": "refs/heads/main"})
    assert exc.value.kind == "invalid_event"


def test_event_from_payload():
    payload = {
        "ref": "refs/heads/feature/X",
        "after": "deadbeef",
        "repository": {"full_name": "org/zebra"},
    }
    assert event_from_payload(payload) == PushEvent("org/zebra", "refs/heads/feature/X", "deadbeef")


def test_event_from_payload_missing_repository():
    with pytest.raises(PipelineError):
        event_from_payload({"ref": "refs/heads/main"})


@pytest.mark.parametrize(
    "ref, expected",
    [
        ("refs/heads/feature-X", "org/zebra/feature_hx"),
        ("refs/heads/feature_x", "org/zebra/feature__x"),
        ("refs/tags/v1", "org/zebra/v1_tag"),
        ("refs/heads/a/b/c", "org/zebra/a-b-c"),
    ],
)
def test_full_path_escapes(ref, expected):
    assert derive_substitution_identifier(PushEvent("org/zebra", ref), FULL_PATH) == expected


@pytest.mark.parametrize(
    "a, b",
    [
        ("refs/heads/feature/x", "refs/heads/feature-x"),
        ("refs/heads/v1", "refs/tags/v1"),
        ("refs/heads/tag/v1", "refs/tags/v1"),
        ("refs/heads/v1_tag", "refs/tags/v1"),
        ("refs/heads/a-/b", "refs/heads/a/-b"),
        ("refs/heads/a_h", "refs/heads/a-"),
    ],
)
def test_full_path_keeps_distinct_refs_apart(a, b):
    ident_a = derive_substitution_identifier(PushEvent("org/zebra", a), FULL_PATH)
    ident_b = derive_substitution_identifier(PushEvent("org/zebra", b), FULL_PATH)
    assert ident_a != ident_b


@pytest.mark.parametrize("mode", [LAST_SEGMENT, FULL_PATH])
@pytest.mark.parametrize("ref", ["refs/heads/", "refs/tags/"])
def test_empty_branch_rejected(mode, ref):
    with pytest.raises(PipelineError) as exc:
        derive_substitution_identifier(PushEvent("org/zebra", ref), mode)
    assert exc.value.kind == "invalid_event"
