"""crony: run a crontab kept in a git repository and commit the results back."""

__version__ = "0.1.0"
