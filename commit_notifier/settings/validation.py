"""Validation rules applied before settings are accepted.

Every admin write and every document import passes through these checks, so
the check cycle only ever sees repositories whose regular expressions compile
and whose names are unique.
"""

from __future__ import annotations

import dataclasses
import enum
import re
import typing as typ

from commit_notifier.common.names import is_valid_repository_name

from .models import InBranch, SuppressFromTo

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .models import ConditionVariant, RepositorySettings, ServiceDocument


class ConfigIssueKind(enum.StrEnum):
    """Reasons a settings change is rejected."""

    INVALID_REGEX = "invalid_regex"
    DUPLICATE_NAME = "duplicate_name"
    INVALID_NAME = "invalid_name"
    UNKNOWN_NAME = "unknown_name"
    INVALID_DOCUMENT = "invalid_document"


@dataclasses.dataclass(frozen=True, slots=True)
class ConfigIssue:
    """Single validation finding."""

    kind: ConfigIssueKind
    message: str

    def __str__(self) -> str:
        """Return the human-readable message."""
        return self.message


class ConfigError(ValueError):
    """Raised when a settings change fails validation."""

    def __init__(self, issues: list[ConfigIssue]) -> None:
        """Capture the issues and aggregate their messages."""
        super().__init__("\n".join(issue.message for issue in issues))
        self.issues = issues

    @property
    def kinds(self) -> frozenset[ConfigIssueKind]:
        """Return the distinct issue kinds carried by this error."""
        return frozenset(issue.kind for issue in self.issues)

    @classmethod
    def single(cls, kind: ConfigIssueKind, message: str) -> ConfigError:
        """Return an error carrying one issue."""
        return cls([ConfigIssue(kind, message)])

    @classmethod
    def duplicate(cls, what: str, name: str) -> ConfigError:
        """Return an error for a name that is already taken."""
        return cls.single(
            ConfigIssueKind.DUPLICATE_NAME, f"{what} {name!r} already exists"
        )

    @classmethod
    def unknown(cls, what: str, name: str) -> ConfigError:
        """Return an error for a name that does not exist."""
        return cls.single(
            ConfigIssueKind.UNKNOWN_NAME, f"{what} {name!r} does not exist"
        )


def _check_regex(pattern: str, label: str, issues: list[ConfigIssue]) -> None:
    try:
        re.compile(pattern)
    except re.error as exc:
        issues.append(
            ConfigIssue(
                ConfigIssueKind.INVALID_REGEX,
                f"{label} is not a valid regular expression ({pattern!r}): {exc}",
            )
        )


def _check_repository_name(name: str, issues: list[ConfigIssue]) -> None:
    if not is_valid_repository_name(name):
        issues.append(
            ConfigIssue(
                ConfigIssueKind.INVALID_NAME,
                f"repository name {name!r} must match [a-zA-Z0-9_-]+",
            )
        )


def condition_issues(
    label: str, condition: ConditionVariant
) -> list[ConfigIssue]:
    """Return the issues found in a single condition variant."""
    issues: list[ConfigIssue] = []
    match condition:
        case InBranch(branch_regex=branch_regex):
            _check_regex(branch_regex, f"{label}.branch_regex", issues)
        case SuppressFromTo(from_regex=from_regex, to_regex=to_regex):
            _check_regex(from_regex, f"{label}.from_regex", issues)
            _check_regex(to_regex, f"{label}.to_regex", issues)
    return issues


def repository_issues(name: str, settings: RepositorySettings) -> list[ConfigIssue]:
    """Return every issue found in one repository's settings.

    Parameters
    ----------
    name : str
        Repository name the settings are stored under.
    settings : RepositorySettings
        Settings to check.

    Returns
    -------
    list[ConfigIssue]
        Findings in discovery order; empty when the settings are valid.

    """
    issues: list[ConfigIssue] = []
    _check_repository_name(name, issues)
    if not settings.url.strip():
        issues.append(
            ConfigIssue(
                ConfigIssueKind.INVALID_DOCUMENT,
                f"repositories.{name}.url must not be empty",
            )
        )
    _check_regex(settings.branch_regex, f"repositories.{name}.branch_regex", issues)
    for condition_name, entry in settings.conditions.items():
        label = f"repositories.{name}.conditions.{condition_name}"
        if not condition_name.strip():
            issues.append(
                ConfigIssue(
                    ConfigIssueKind.INVALID_NAME,
                    f"repositories.{name} has a condition with an empty name",
                )
            )
        issues.extend(condition_issues(label, entry.condition))
    return issues


def validate_repository(name: str, settings: RepositorySettings) -> RepositorySettings:
    """Return ``settings`` unchanged when valid, else raise ConfigError."""
    issues = repository_issues(name, settings)
    if issues:
        raise ConfigError(issues)
    return settings


def _subscription_issues(
    document: ServiceDocument, known: cabc.Collection[str]
) -> list[ConfigIssue]:
    issues: list[ConfigIssue] = []
    seen: set[tuple[str, str]] = set()
    for index, subscription in enumerate(document.subscriptions):
        label = f"subscriptions[{index}]"
        repository = document.repositories.get(subscription.repository)
        if repository is None and subscription.repository not in known:
            issues.append(
                ConfigIssue(
                    ConfigIssueKind.UNKNOWN_NAME,
                    f"{label} references unknown repository "
                    f"{subscription.repository!r}",
                )
            )
            continue
        key = (subscription.repository, subscription.subscriber.chat_id)
        if key in seen:
            issues.append(
                ConfigIssue(
                    ConfigIssueKind.DUPLICATE_NAME,
                    f"{label} duplicates the subscription of chat "
                    f"{subscription.subscriber.chat_id!r} to "
                    f"{subscription.repository!r}",
                )
            )
        seen.add(key)
        if repository is None:
            continue
        issues.extend(
            ConfigIssue(
                ConfigIssueKind.UNKNOWN_NAME,
                f"{label} references unknown condition {condition!r}",
            )
            for condition in subscription.conditions
            if condition not in repository.conditions
        )
    return issues


def validate_document(
    document: ServiceDocument, *, known_repositories: cabc.Collection[str] = ()
) -> ServiceDocument:
    """Validate a whole service document.

    Parameters
    ----------
    document : ServiceDocument
        Parsed document to check.
    known_repositories : Collection[str], optional
        Names already tracked outside the document; subscriptions may refer
        to them.

    Returns
    -------
    ServiceDocument
        The same document when every check passes.

    Raises
    ------
    ConfigError
        With every issue found across repositories and subscriptions.

    """
    issues: list[ConfigIssue] = []
    if document.version < 1:
        issues.append(
            ConfigIssue(ConfigIssueKind.INVALID_DOCUMENT, "version must be >= 1")
        )
    for name, settings in document.repositories.items():
        issues.extend(repository_issues(name, settings))
    issues.extend(_subscription_issues(document, known_repositories))
    if issues:
        raise ConfigError(issues)
    return document


__all__ = [
    "ConfigError",
    "ConfigIssue",
    "ConfigIssueKind",
    "condition_issues",
    "repository_issues",
    "validate_document",
    "validate_repository",
]
