"""Processing engine.

Key Components:
    - ImprovementRunner: Runs the agent and inspects (and tests) its changes
    - PullRequestPublisher: Idempotent PR creation with base-branch fallback
    - StateTracker / ArtifactStore: Audit trail in the repository and output dir
    - RepositoryProcessor: Drives one repository through the state machine
    - RunOrchestrator: Processes the repository list sequentially

Example:
    >>> from repo_improver.engine.orchestrator import RunOrchestrator
    >>> summary = await orchestrator.run()
"""
