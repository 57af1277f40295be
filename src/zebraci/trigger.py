# trigger.py
"""
Push events and the substitution identifier derived from them.

The identifier is `<owner>/<repo>/<branch>`, lowercased, and parameterizes the
remote build (image path, deployment name). Two derivations exist:

  last-segment  branch = final component of the ref
                refs/heads/feature/X -> org/zebra/x
  full-path     branch = ref minus refs/heads/ (or refs/tags/), escaped:
                "/" -> "-", "-" -> "_h", "_" -> "__", tags get a "_tag" suffix
                refs/heads/feature/X -> org/zebra/feature-x
                refs/heads/feature-X -> org/zebra/feature_hx
                refs/tags/v1         -> org/zebra/v1_tag

last-segment is what the deployed remote build config expects, but it maps
feature/foo, fix/foo and the tag foo onto the same identifier;
`collapsed_branch` reports when that happens. full-path keeps distinct refs
distinct, up to letter case.
"""
from __future__ import annotations

import os
from typing import Any, Mapping, Optional

from .errors import PipelineError
from .model import FULL_PATH, LAST_SEGMENT, PushEvent

BRANCH_PREFIX = "refs/heads/"
TAG_PREFIX = "refs/tags/"
REF_PREFIXES = (BRANCH_PREFIX, TAG_PREFIX)

FULL_PATH_ESCAPES = {"/": "-", "-": "_h", "_": "__"}
TAG_SUFFIX = "_tag"


def event_from_env(environ: Optional[Mapping[str, str]] = None) -> PushEvent:
    """Build a PushEvent from the GitHub Actions environment."""
    env = os.environ if environ is None else environ
    repository = env.get("GITHUB_REPOSITORY", "").strip()
    ref = env.get("GITHUB_REF", "").strip()
    if not repository or not ref:
        raise PipelineError(
            kind="invalid_event",
            message="GITHUB_REPOSITORY and GITHUB_REF must be set",
            details={"GITHUB_REPOSITORY": repository or "<unset>", "GITHUB_REF": ref or "<unset>"},
        )
    return PushEvent(repository=repository, ref=ref, sha=env.get("GITHUB_SHA") or None)


def event_from_payload(payload: Mapping[str, Any]) -> PushEvent:
    """Build a PushEvent from a GitHub push webhook body."""
    repo = payload.get("repository") or {}
    repository = repo.get("full_name") or ""
    ref = payload.get("ref") or ""
    if not repository or not ref:
        raise PipelineError(
            kind="invalid_event",
            message="push payload needs repository.full_name and ref",
        )
    return PushEvent(repository=repository, ref=ref, sha=payload.get("after") or None)


def branch_name(ref: str) -> str:
    """Final path component of a ref; a ref without '/' is used whole."""
    return ref.rsplit("/", 1)[-1]


def branch_path(ref: str) -> str:
    """Branch or tag name with the refs/heads/ (refs/tags/) prefix removed."""
    for prefix in REF_PREFIXES:
        if ref.startswith(prefix):
            return ref[len(prefix):]
    return ref


def encode_branch_path(ref: str) -> str:
    """
    Flatten the whole branch (or tag) name into one image path component.

    Every "_" in the result starts a two character escape, so the encoding
    can be read back unambiguously and two refs never share a result.
    """
    name = branch_path(ref)
    encoded = "".join(FULL_PATH_ESCAPES.get(c, c) for c in name)
    if encoded and ref.startswith(TAG_PREFIX):
        encoded += TAG_SUFFIX
    return encoded


def derive_substitution_identifier(event: PushEvent, mode: str = LAST_SEGMENT) -> str:
    if mode == LAST_SEGMENT:
        branch = branch_name(event.ref)
    elif mode == FULL_PATH:
        branch = encode_branch_path(event.ref)
    else:
        raise ValueError(f"Unknown branch mode: {mode!r}")

    if not branch:
        raise PipelineError(kind="invalid_event", message=f"Cannot derive a branch from ref {event.ref!r}")
    return f"{event.repository.strip('/')}/{branch}".lower()


def collapsed_branch(event: PushEvent, mode: str = LAST_SEGMENT) -> Optional[str]:
    """
    Return the ref name when `mode` drops information from it, else None.

    Under last-segment, refs/heads/feature/foo -> "feature/foo" and
    refs/tags/v1 -> "tags/v1" (it would share an identifier with branch v1).
    """
    if mode != LAST_SEGMENT:
        return None
    if event.ref.startswith(TAG_PREFIX):
        return event.ref[len("refs/"):]
    full = branch_path(event.ref)
    return full if "/" in full else None
