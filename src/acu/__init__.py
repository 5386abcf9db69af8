"""activity-completion-upload: bulk-import activity completions into a learning platform."""

__version__ = "0.3.0"
