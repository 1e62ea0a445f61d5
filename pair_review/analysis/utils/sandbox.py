"""Sandbox policy limiting what a reviewer process may execute.

Reviewers only need to inspect the repository. The default policy allows a
short list of read-only file and VCS commands and denies commands that
remove, move or re-permission files or rewrite VCS history. Unrestricted mode
drops every rule.
"""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass, field, replace
from typing import List, Tuple

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_COMMANDS: Tuple[str, ...] = (
    "git diff",
    "git log",
    "git show",
    "git status",
    "git branch",
    "git rev-parse",
    "git-diff-lines",
    "ls",
    "cat",
    "pwd",
    "head",
    "tail",
    "wc",
    "find",
    "grep",
    "rg",
)

DEFAULT_DENIED_COMMANDS: Tuple[str, ...] = (
    "rm",
    "mv",
    "chmod",
    "chown",
    "sudo",
    "git commit",
    "git push",
    "git checkout",
    "git reset",
    "git rebase",
    "git merge",
)

BLOCKED_SHELL_CHARACTERS = (";", "`", "$(", "&&", "||", "|", ">", "<", "&")


@dataclass(frozen=True)
class SandboxPolicy:
    """Allow/deny rules for the sub-commands a reviewer may run.

    Rules are command prefixes matched word by word, so ``git diff`` matches
    ``git diff --stat`` but not ``git difftool``. Denials win over allowances.
    """

    allowed: Tuple[str, ...] = field(default=DEFAULT_ALLOWED_COMMANDS)
    denied: Tuple[str, ...] = field(default=DEFAULT_DENIED_COMMANDS)
    unrestricted: bool = False

    def unrestricted_copy(self) -> "SandboxPolicy":
        return replace(self, allowed=(), denied=(), unrestricted=True)

    def effective_allowed(self) -> Tuple[str, ...]:
        return () if self.unrestricted else self.allowed

    def effective_denied(self) -> Tuple[str, ...]:
        return () if self.unrestricted else self.denied

    def rendered_allowed(self) -> Tuple[str, ...]:
        """Allow rules safe to hand to a provider CLI.

        Rules this policy would itself reject, because a denial covers them
        or they contain shell composition, are left out.
        """
        rendered = tuple(rule for rule in self.effective_allowed() if self.permits(rule))
        for rule in set(self.effective_allowed()) - set(rendered):
            logger.warning(f"Not rendering sandbox allow rule '{rule}', the policy rejects it")
        return rendered

    def permits(self, command: str) -> bool:
        """Check whether a shell command line is allowed under this policy.

        Args:
            command: Command line as the reviewer would run it

        Returns:
            True if the command may run
        """
        if self.unrestricted:
            return True
        if not command.strip():
            return False

        for blocked in BLOCKED_SHELL_CHARACTERS:
            if blocked in command:
                logger.debug(f"Command rejected, contains '{blocked}': {command}")
                return False

        try:
            words = shlex.split(command)
        except ValueError:
            return False

        if any(_matches(words, rule) for rule in self.denied):
            return False
        return any(_matches(words, rule) for rule in self.allowed)


def _matches(words: List[str], rule: str) -> bool:
    rule_words = rule.split()
    if len(words) < len(rule_words):
        return False
    head = words[: len(rule_words)]
    # Executables invoked by path still match their bare name.
    head[0] = head[0].rsplit("/", 1)[-1]
    return head == rule_words


def read_only_policy(unrestricted: bool = False) -> SandboxPolicy:
    """Build the default review policy, optionally relaxed to unrestricted."""
    policy = SandboxPolicy()
    if unrestricted:
        return policy.unrestricted_copy()
    return policy
