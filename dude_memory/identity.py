"""
Project identity detection.

A project is one repository-or-directory identity. The name is derived
from the working directory, preferring the ``org/repo`` form taken from
the git remote so the same repository maps to the same project on every
machine:

1. ``org/repo`` from ``git remote get-url origin`` (GitHub, GitLab, Bitbucket)
2. basename of ``git rev-parse --show-toplevel``
3. the working directory path itself when it is not a git checkout
"""

from __future__ import annotations

import logging
import re
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)

_REMOTE_PATTERN = re.compile(r"(?:github\.com|gitlab\.com|bitbucket\.org)[/:]([^/]+)/([^/.]+)")

GIT_TIMEOUT_SECONDS = 5


def parse_remote_url(url: str) -> str | None:
    """Extract ``org/repo`` from a git remote URL.

    Handles both ``https://github.com/org/repo.git`` and
    ``git@github.com:org/repo.git`` forms. Returns None for hosts
    that are not recognised.
    """
    match = _REMOTE_PATTERN.search(url.strip())
    if not match:
        return None
    return f"{match.group(1)}/{match.group(2)}"


def legacy_project_name(name: str) -> str | None:
    """Name a namespaced project had before remotes were used.

    ``acme/widgets`` was previously stored as ``widgets``. Names without a
    namespace have no legacy form.
    """
    if "/" not in name:
        return None
    return name.rsplit("/", 1)[-1] or None


def _git(args: list[str], cwd: Path) -> str | None:
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT_SECONDS,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError, subprocess.TimeoutExpired):
        return None
    return result.stdout.strip() or None


def detect_project_name(cwd: Path) -> str:
    """Derive the project name for a working directory."""
    toplevel = _git(["rev-parse", "--show-toplevel"], cwd)
    if toplevel is None:
        logger.debug(f"{cwd} is not a git checkout, using the path as project name")
        return str(cwd)

    name = Path(toplevel).name
    remote = _git(["remote", "get-url", "origin"], cwd)
    if remote:
        namespaced = parse_remote_url(remote)
        if namespaced:
            name = namespaced

    return name
