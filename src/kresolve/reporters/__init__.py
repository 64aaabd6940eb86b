"""Output reporters for resolved dependency graphs.

This module provides reporters for rendering resolution results to
human-readable documents.
"""

from kresolve.reporters.base import BaseReporter
from kresolve.reporters.markdown import MarkdownReporter

__all__ = ["BaseReporter", "MarkdownReporter"]
