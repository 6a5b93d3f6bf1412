"""Repository slug utilities.

Repository slugs are GitHub identifiers in ``owner/name`` format, and pull
request references extend them as ``owner/name#number``. They are not
filesystem paths, even though they use ``/`` as a separator, so they should
be parsed using these helpers rather than ``pathlib``.
"""

from __future__ import annotations

import re

from tallyman.common.errors import ConfigError

_PULL_REQUEST_REF = re.compile(r"^(?P<owner>[^/#\s]+)/(?P<name>[^/#\s]+)#(?P<number>\d+)$")


class InvalidRepositoryError(ConfigError):
    """Raised when a repository or pull request identifier is malformed."""

    @classmethod
    def for_slug(cls, slug: str) -> InvalidRepositoryError:
        """Return an error for a malformed ``owner/name`` slug."""
        return cls(f"Invalid repository slug: expected 'owner/name', got {slug!r}")

    @classmethod
    def for_pull_request(cls, reference: str) -> InvalidRepositoryError:
        """Return an error for a malformed ``owner/name#number`` reference."""
        return cls(
            "Invalid pull request reference: expected 'owner/name#number', "
            f"got {reference!r}"
        )


def repo_slug(owner: str, name: str) -> str:
    """Build a repository slug from owner and name.

    Examples
    --------
    >>> repo_slug("octo", "reef")
    'octo/reef'

    """
    return f"{owner}/{name}"


def parse_repo_slug(slug: str) -> tuple[str, str]:
    """Parse a repository slug into owner and name.

    Parameters
    ----------
    slug:
        Repository slug in ``owner/name`` format.

    Returns
    -------
    tuple[str, str]
        ``(owner, name)``.

    Raises
    ------
    InvalidRepositoryError
        If the slug is not in ``owner/name`` format.

    Examples
    --------
    >>> parse_repo_slug("octo/reef")
    ('octo', 'reef')

    """
    if slug.count("/") != 1:
        raise InvalidRepositoryError.for_slug(slug)

    owner, name = (part.strip() for part in slug.split("/"))
    if not owner or not name:
        raise InvalidRepositoryError.for_slug(slug)

    return owner, name


def parse_pull_request_ref(reference: str) -> tuple[str, str, int]:
    """Parse an ``owner/name#number`` reference.

    Examples
    --------
    >>> parse_pull_request_ref("octo/reef#42")
    ('octo', 'reef', 42)

    """
    match = _PULL_REQUEST_REF.match(reference.strip())
    if match is None:
        raise InvalidRepositoryError.for_pull_request(reference)
    return match["owner"], match["name"], int(match["number"])
