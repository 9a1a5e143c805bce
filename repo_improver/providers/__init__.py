"""Git hosting and AI agent providers.

Key Components:
    - VcsProvider: Abstract base for git hosting providers
    - GitHubRestProvider: GitHub via PyGithub
    - GiteaRestProvider: Gitea REST API via httpx
    - ProviderRegistry: Provider detection for repository references
    - OpenCodeAgent: The opencode CLI as an external agent
"""
