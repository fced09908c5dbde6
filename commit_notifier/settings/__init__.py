"""Repository, condition, and subscription settings.

The settings package owns the admin configuration: typed msgspec models, the
validation that rejects bad regular expressions and duplicate names before
they are stored, a YAML loader for declarative service documents, and the
persisted :class:`SettingsStore` the check cycle snapshots at start.
"""

from .loader import load_service_document, parse_service_document
from .models import (
    ConditionSettings,
    ConditionVariant,
    GitHubInfo,
    InBranch,
    PullRequestWatch,
    RepositorySettings,
    ServiceDocument,
    Subscriber,
    Subscription,
    SuppressFromTo,
)
from .store import SettingsSnapshot, SettingsStore
from .validation import ConfigError, ConfigIssue, ConfigIssueKind

__all__ = [
    "ConditionSettings",
    "ConditionVariant",
    "ConfigError",
    "ConfigIssue",
    "ConfigIssueKind",
    "GitHubInfo",
    "InBranch",
    "PullRequestWatch",
    "RepositorySettings",
    "ServiceDocument",
    "SettingsSnapshot",
    "SettingsStore",
    "Subscriber",
    "Subscription",
    "SuppressFromTo",
    "load_service_document",
    "parse_service_document",
]
