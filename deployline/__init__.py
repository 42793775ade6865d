"""deployline — build, push, deploy and verify one image per run."""

__version__ = "0.1.0"
