"""Version-control status for the pre-flight gate."""

import logging
import re
import subprocess

from specgraph.errors import SpecGraphError

log = logging.getLogger("spec-graph.git")

# Unstaged modification/addition/deletion, or untracked file
RE_UNSTAGED = re.compile(r'^(?:.[MAD]|\?\?)')


def _git(root, *args):
    return subprocess.run(
        ["git", *args],
        cwd=root,
        capture_output=True,
        text=True,
        timeout=30,
        check=True,
    )


def has_uncommitted_changes(root):
    """True when the working tree has unstaged or untracked files.

    Outside a git repository, or without git installed, there is nothing to
    check and the answer is False.
    """
    try:
        result = _git(root, "status", "--porcelain")
    except (OSError, subprocess.SubprocessError) as e:
        log.debug("git status unavailable in %s: %s", root, e)
        return False
    return any(RE_UNSTAGED.match(line) for line in result.stdout.splitlines())


def stage_all(root):
    try:
        _git(root, "add", "-A")
    except subprocess.CalledProcessError as e:
        raise SpecGraphError(f"Failed to stage changes: {e.stderr.strip() or e}") from e
    except (OSError, subprocess.SubprocessError) as e:
        raise SpecGraphError(f"Failed to stage changes: {e}") from e
    log.info("Staged all changes in %s", root)
