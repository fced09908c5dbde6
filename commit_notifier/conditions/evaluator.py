"""Condition evaluation for one repository's observations.

The evaluator is a pure function of its inputs: the observations produced in
the current cycle (each carrying the branches that already knew the commit)
and the repository's compiled rules. Every rule is applied to every
observation independently, in declared order. A suppression only withholds
the suppressing rule's own event; other rules still decide for themselves.
"""

from __future__ import annotations

import dataclasses as dc
import typing as typ

from .messages import render_event_message
from .models import Decision, NotificationEvent

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from commit_notifier.settings.models import GitHubInfo

    from .models import CommitObservation
    from .rules import Rule


@dc.dataclass(frozen=True, slots=True)
class RuleOutcome:
    """Decision taken by one rule for one observation."""

    commit_id: str
    branch: str
    condition: str
    decision: Decision


@dc.dataclass(frozen=True, slots=True)
class Evaluation:
    """Events and per-rule outcomes of one evaluation pass."""

    events: tuple[NotificationEvent, ...] = ()
    outcomes: tuple[RuleOutcome, ...] = ()

    @property
    def suppressed(self) -> int:
        """Return how many observations were suppressed by some rule."""
        return sum(
            1 for outcome in self.outcomes if outcome.decision is Decision.SUPPRESS
        )


def evaluate(
    repository: str,
    observations: cabc.Sequence[CommitObservation],
    rules: cabc.Sequence[Rule],
    *,
    github_info: GitHubInfo | None = None,
) -> Evaluation:
    """Evaluate ``rules`` against ``observations`` for ``repository``.

    Parameters
    ----------
    repository
        Repository the observations belong to.
    observations
        Commits newly observed this cycle, across all tracked branches.
    rules
        Compiled conditions in declared order. An empty sequence yields no
        events.
    github_info
        Optional GitHub coordinates used for commit links in messages.

    Returns
    -------
    Evaluation
        Events with at most one entry per (commit, branch, condition), and
        the decision every rule took for every observation.

    Raises
    ------
    ValueError
        If an observation belongs to another repository.

    """
    events: list[NotificationEvent] = []
    outcomes: list[RuleOutcome] = []
    emitted: set[tuple[str, str, str]] = set()

    for observation in observations:
        if observation.repository != repository:
            msg = (
                f"observation for {observation.repository!r} passed to the "
                f"evaluation of {repository!r}"
            )
            raise ValueError(msg)
        for rule in rules:
            decision = rule.decide(observation)
            outcomes.append(
                RuleOutcome(
                    commit_id=observation.commit_id,
                    branch=observation.branch,
                    condition=rule.name,
                    decision=decision,
                )
            )
            if decision is not Decision.NOTIFY:
                continue
            key = (observation.commit_id, observation.branch, rule.name)
            if key in emitted:
                continue
            emitted.add(key)
            events.append(
                NotificationEvent(
                    repository=repository,
                    branch=observation.branch,
                    condition=rule.name,
                    commit_id=observation.commit_id,
                    message=render_event_message(observation, rule.name, github_info),
                )
            )

    return Evaluation(events=tuple(events), outcomes=tuple(outcomes))


__all__ = ["Evaluation", "RuleOutcome", "evaluate"]
