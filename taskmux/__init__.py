"""taskmux - keep AI coding-agent tmux panes in sync with a task dashboard."""

__version__ = "0.3.0"
