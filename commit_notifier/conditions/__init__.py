"""Condition evaluation: compiled rules, evaluator, and message rendering.

Example:
>>> rules = compile_rules(settings.conditions)
>>> evaluation = evaluate("nixpkgs", observations, rules)
>>> [event.condition for event in evaluation.events]
['release']

"""

from .evaluator import Evaluation, RuleOutcome, evaluate
from .messages import render_event_message, short_id
from .models import CommitObservation, Decision, NotificationEvent
from .rules import (
    InBranchRule,
    Rule,
    SuppressFromToRule,
    compile_rule,
    compile_rules,
)

__all__ = [
    "CommitObservation",
    "Decision",
    "Evaluation",
    "InBranchRule",
    "NotificationEvent",
    "Rule",
    "RuleOutcome",
    "SuppressFromToRule",
    "compile_rule",
    "compile_rules",
    "evaluate",
    "render_event_message",
    "short_id",
]
