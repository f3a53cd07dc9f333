# git.py
# Small wrapper around the Git CLI, used to fill in the trigger branch
# when the caller does not pass one.

from __future__ import annotations

import os
import subprocess
from typing import Optional


def _git(args: list[str], cwd: Optional[str] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    Raises subprocess.CalledProcessError on a non-zero exit and
    FileNotFoundError when git is not installed.
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=cwd,
        text=True,
        stderr=subprocess.DEVNULL,
    )
    return out.strip()


def current_branch(cwd: Optional[str] = None) -> str:
    """
    Return the branch the working tree is on.

    CI systems check out a detached HEAD; in that case the branch name
    from GITHUB_HEAD_REF / GITHUB_REF_NAME is used when present.
    """
    branch = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if branch != "HEAD":
        return branch

    for var in ("GITHUB_HEAD_REF", "GITHUB_REF_NAME"):
        value = os.environ.get(var)
        if value:
            return value
    return branch
