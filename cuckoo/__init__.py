"""
.. include:: ../README.md
"""

__all__ = [
    "builder",
    "chart",
    "environment",
    "exceptions",
    "helm",
    "release",
    "tags",
    "template",
    "values",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
