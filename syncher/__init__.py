"""Migration syncher: keep database schema objects in sync with a git repository."""
