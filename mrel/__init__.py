"""Release orchestration for multi-package monorepos."""

__version__ = "0.1.0"
