"""Git helpers: URL parsing and disposable clone workspaces."""
