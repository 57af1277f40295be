# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Args:
        args: List of git arguments (e.g. ["rev-parse", "HEAD"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.PIPE,
    )
    return out.strip()


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Return the full SHA of HEAD; used to tag runs with the commit they built."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_ref(cwd: Optional[str | Path] = None) -> str:
    """
    Return the full ref of the checked out branch (e.g. refs/heads/main).

    Falls back to the HEAD sha for a detached checkout.
    """
    try:
        return _git(["symbolic-ref", "-q", "HEAD"], cwd=cwd)
    except subprocess.CalledProcessError:
        return head_sha(cwd=cwd)


def remote_url(remote: str = "origin", cwd: Optional[str | Path] = None) -> str:
    return _git(["remote", "get-url", remote], cwd=cwd)


_SLUG_RE = re.compile(r"[:/](?P<owner>[^/:]+)/(?P<name>[^/]+?)(?:\.git)?/?$")


def repository_slug(url: str) -> str:
    """
    Turn a remote URL into an owner/name slug.

    Handles both https://github.com/org/zebra.git and git@github.com:org/zebra.git.
    """
    match = _SLUG_RE.search(url.strip())
    if not match:
        raise ValueError(f"Cannot derive owner/name from remote URL: {url}")
    return f"{match.group('owner')}/{match.group('name')}"


def clone_at(repo_url: str, ref: str, dest: Path) -> Path:
    """
    Clone a repository into `dest` and check out `ref` (branch, tag or sha).

    `dest` must not exist yet; every push gets its own checkout.

    Raises:
        RuntimeError: If git operations fail
    """
    if dest.exists():
        raise RuntimeError(f"Checkout directory already exists: {dest}")
    dest.parent.mkdir(parents=True, exist_ok=True)

    try:
        result = subprocess.run(
            ["git", "clone", "--quiet", repo_url, str(dest)],
            check=False,
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            raise RuntimeError(f"git clone failed: {result.stderr}")

        result = subprocess.run(
            ["git", "checkout", "--quiet", ref],
            cwd=dest,
            check=False,
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            raise RuntimeError(f"git checkout {ref} failed: {result.stderr}")
    except FileNotFoundError:
        raise RuntimeError("git command not found. Please install Git.")

    return dest
