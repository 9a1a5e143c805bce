"""repo-improver: batch AI-assisted repository improvement with GitHub and Gitea pull requests."""

__version__ = "0.1.0"
