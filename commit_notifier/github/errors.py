"""GitHub lookup errors."""

from __future__ import annotations


class GitHubAPIError(RuntimeError):
    """Raised when GitHub returns an error response."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialise with a message and optional HTTP status code."""
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def http_error(cls, status_code: int, path: str) -> GitHubAPIError:
        """Return an error for non-2xx HTTP responses."""
        return cls(
            f"GitHub REST HTTP {status_code} for {path}", status_code=status_code
        )

    @classmethod
    def transport(cls, detail: str) -> GitHubAPIError:
        """Return an error for requests that never produced a response."""
        return cls(f"GitHub REST request failed: {detail}")


class GitHubResponseShapeError(RuntimeError):
    """Raised when a GitHub payload lacks the fields a lookup needs."""

    @classmethod
    def invalid(cls, detail: str) -> GitHubResponseShapeError:
        """Return an error describing the malformed payload."""
        return cls(f"GitHub REST response has unexpected shape: {detail}")


class GitHubConfigError(RuntimeError):
    """Raised when GitHub lookup configuration is invalid."""

    @classmethod
    def empty_token(cls) -> GitHubConfigError:
        """Return an error when a provided token is blank."""
        return cls("GitHub token must be non-empty when provided")

    @classmethod
    def invalid_identifier(cls, identifier: str) -> GitHubConfigError:
        """Return an error for a pull request identifier that is not a number."""
        return cls(f"pull request identifier must be numeric, got {identifier!r}")
