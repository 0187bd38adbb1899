"""Typed ref-matching rules.

Replaces inline branch-pattern scripting with an ordered list of rules that
can be evaluated (and tested) as a pure function.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from fnmatch import fnmatchcase

from .models import TriggerType

TAG_PREFIX = "refs/tags/"
BRANCH_PREFIX = "refs/heads/"


class MatchKind(str, Enum):
    """How a rule's pattern is compared to a ref."""

    EXACT = "exact"
    PREFIX = "prefix"
    GLOB = "glob"
    TAG = "tag"


@dataclass(frozen=True)
class RefRule:
    """Maps refs matching a pattern (for the given triggers) to an environment.

    Attributes:
        environment: Environment selected when the rule matches
        kind: Comparison strategy
        pattern: Full ref for exact/prefix/glob ("refs/heads/main"),
                 tag-name glob for tag rules ("v*")
        triggers: Triggers the rule applies to
    """

    environment: str
    kind: MatchKind
    pattern: str
    triggers: frozenset[TriggerType] = frozenset({TriggerType.PUSH, TriggerType.MANUAL})

    def matches_ref(self, ref: str) -> bool:
        """Check the ref alone, ignoring the trigger."""
        match self.kind:
            case MatchKind.EXACT:
                return ref == self.pattern
            case MatchKind.PREFIX:
                return ref.startswith(self.pattern)
            case MatchKind.GLOB:
                return fnmatchcase(ref, self.pattern)
            case MatchKind.TAG:
                if not ref.startswith(TAG_PREFIX):
                    return False
                return fnmatchcase(ref[len(TAG_PREFIX) :], self.pattern)
        return False

    def matches(self, ref: str, trigger: TriggerType) -> bool:
        return trigger in self.triggers and self.matches_ref(ref)

    def describe(self) -> str:
        return f"{self.kind.value}:{self.pattern}"


def first_match(
    rules: list[RefRule], ref: str, trigger: TriggerType
) -> RefRule | None:
    """Return the first rule matching (ref, trigger); declaration order wins."""
    for rule in rules:
        if rule.matches(ref, trigger):
            return rule
    return None


def is_release_ref(ref: str) -> bool:
    """Tags and release/* branches always carry deployable changes."""
    return ref.startswith(TAG_PREFIX) or ref.startswith(f"{BRANCH_PREFIX}release/")
