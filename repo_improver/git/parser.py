"""Git URL parsing utilities.

Repository references given as full URLs are parsed to recover the host and
the repository path, which the providers need for API calls.

Supported URL formats:
    - https://github.com/owner/repo.git
    - https://github.com/owner/repo
    - https://gitea.example.com:3000/owner/repo.git
    - http://gitea.local/owner/repo.git
    - https://token@github.com/owner/repo.git (credentials are ignored)

Example:
    >>> parser = GitUrlParser("https://gitea.example.com:3000/myorg/myrepo.git")
    >>> parser.host
    'gitea.example.com'
    >>> parser.full_name
    'myorg/myrepo'
    >>> parser.base_url
    'https://gitea.example.com:3000'
"""

import re

from repo_improver.exceptions import InvalidRepositoryReferenceError


class GitUrlParser:
    """Parser for HTTP(S) Git URLs.

    All properties return valid values after successful initialization.
    If parsing fails, the constructor raises InvalidRepositoryReferenceError.

    Attributes:
        url: Original URL that was parsed.
        scheme: ``http`` or ``https``.
        host: Hostname of the Git server.
        port: Port number, or None for the scheme default.
        path: Repository path without leading slash or ``.git`` suffix.
        owner: First path component.
        repo: Second path component.
    """

    # Matches: https://gitea.com/owner/repo.git or https://user:pw@gitea.com:3000/owner/repo
    HTTPS_PATTERN = re.compile(
        r"^(?P<scheme>https?)://(?:[^@/]+@)?(?P<host>[a-zA-Z0-9._-]+)(?::(?P<port>\d+))?/(?P<path>.+?)(?:\.git)?/?$"
    )

    def __init__(self, url: str) -> None:
        """Initialize parser with a Git URL.

        Args:
            url: HTTP(S) Git URL. Leading/trailing whitespace is trimmed.

        Raises:
            InvalidRepositoryReferenceError: If the URL is not HTTP(S) or the
                path does not contain owner/repo.
        """
        self.url = url.strip()

        match = self.HTTPS_PATTERN.match(self.url)
        if not match:
            raise InvalidRepositoryReferenceError(self.url, reason="Must be an HTTP(S) URL (https://host/owner/repo)")

        self.scheme: str = match.group("scheme")
        self.host: str = match.group("host")
        port = match.group("port")
        self.port: int | None = int(port) if port else None
        self.path: str = match.group("path").strip("/").removesuffix(".git")

        parts = self.path.split("/")
        if len(parts) < 2 or not parts[0] or not parts[1]:
            raise InvalidRepositoryReferenceError(self.url, reason=f"Path must contain owner/repo (got: {self.path})")

        self.owner: str = parts[0]
        self.repo: str = parts[1]

    @property
    def full_name(self) -> str:
        """``owner/repo`` as used by hosting APIs."""
        return f"{self.owner}/{self.repo}"

    @property
    def base_url(self) -> str:
        """Scheme, host and port without any path."""
        if self.port:
            return f"{self.scheme}://{self.host}:{self.port}"
        return f"{self.scheme}://{self.host}"

    def __repr__(self) -> str:
        return f"GitUrlParser(host={self.host!r}, path={self.path!r})"
