"""Compiled condition predicates.

Conditions are authored as tagged settings variants. Before evaluation they
are compiled into small rule objects holding pre-compiled patterns. Rule
patterns use search semantics, so authors anchor with ``^``/``$`` when they
want whole-name matches.
"""

from __future__ import annotations

import dataclasses
import re
import typing as typ

from commit_notifier.settings.models import InBranch, SuppressFromTo

from .models import Decision

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from commit_notifier.settings.models import ConditionSettings, ConditionVariant

    from .models import CommitObservation


class Rule(typ.Protocol):
    """Pure predicate over one commit observation."""

    name: str

    @property
    def uses_history(self) -> bool:
        """Return True when the rule reads ``known_branches``."""
        ...

    def decide(self, observation: CommitObservation) -> Decision:
        """Return the decision for ``observation``."""
        ...


@dataclasses.dataclass(frozen=True, slots=True)
class InBranchRule:
    """Notify for every new commit on a matching branch."""

    name: str
    branch: re.Pattern[str]

    @property
    def uses_history(self) -> bool:
        """Branch membership alone decides this rule."""
        return False

    def decide(self, observation: CommitObservation) -> Decision:
        """Notify when the observed branch matches, otherwise ignore."""
        if self.branch.search(observation.branch):
            return Decision.NOTIFY
        return Decision.IGNORE


@dataclasses.dataclass(frozen=True, slots=True)
class SuppressFromToRule:
    """Notify on ``to`` branches unless a ``from`` branch already had the commit."""

    name: str
    from_branch: re.Pattern[str]
    to_branch: re.Pattern[str]

    @property
    def uses_history(self) -> bool:
        """Prior branch knowledge drives suppression."""
        return True

    def decide(self, observation: CommitObservation) -> Decision:
        """Apply only to ``to`` branches; suppress on prior ``from`` knowledge."""
        if not self.to_branch.search(observation.branch):
            return Decision.IGNORE
        if any(self.from_branch.search(known) for known in observation.known_branches):
            return Decision.SUPPRESS
        return Decision.NOTIFY


def compile_rule(name: str, condition: ConditionVariant) -> Rule:
    """Compile one condition variant.

    Raises
    ------
    re.error
        If a pattern does not compile. Settings are validated on write, so
        this signals a programming error and is never swallowed.

    """
    match condition:
        case InBranch(branch_regex=branch_regex):
            return InBranchRule(name=name, branch=re.compile(branch_regex))
        case SuppressFromTo(from_regex=from_regex, to_regex=to_regex):
            return SuppressFromToRule(
                name=name,
                from_branch=re.compile(from_regex),
                to_branch=re.compile(to_regex),
            )
    msg = f"unsupported condition variant: {type(condition).__name__}"
    raise TypeError(msg)


def compile_rules(conditions: cabc.Mapping[str, ConditionSettings]) -> tuple[Rule, ...]:
    """Compile a repository's conditions, preserving their declared order."""
    return tuple(
        compile_rule(name, entry.condition) for name, entry in conditions.items()
    )


__all__ = [
    "InBranchRule",
    "Rule",
    "SuppressFromToRule",
    "compile_rule",
    "compile_rules",
]
