# git.py
# Small, focused wrapper around the Git CLI.
# The CLI uses it to fill the trigger context (branch, sha) when the caller
# does not pass them explicitly.

from __future__ import annotations

import subprocess
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
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
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def head_sha(cwd: Optional[str] = None) -> str:
    """Return the full SHA hash of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def current_branch(cwd: Optional[str] = None) -> Optional[str]:
    """
    Return the checked out branch name, or None for a detached HEAD.
    """
    name = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    return None if name == "HEAD" else name


def detect(cwd: Optional[str] = None) -> tuple[Optional[str], Optional[str]]:
    """
    Best-effort (branch, sha) for the trigger context.

    Outside a repository, or without git installed, both are None.
    """
    try:
        return current_branch(cwd), head_sha(cwd)
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None, None
