"""Base interface for output reporters.

Reporters generate formatted documents from the outcome of resolving
every variant of a project.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from kresolve.models import Variant
from kresolve.resolver import ResolutionOutcome


class BaseReporter(ABC):
    """Abstract base class for output reporters."""

    @abstractmethod
    def render(
        self,
        outcomes: dict[Variant, ResolutionOutcome],
        project: Optional[str] = None,
    ) -> str:
        """Render resolution outcomes to formatted output.

        Args:
            outcomes: Each variant mapped to its graph or its error.
            project: Optional project name for the document title.

        Returns:
            Rendered output as a string.
        """
        ...

    def write(
        self,
        outcomes: dict[Variant, ResolutionOutcome],
        output_path: Path,
        project: Optional[str] = None,
    ) -> None:
        """Render and write output to a file."""
        content = self.render(outcomes, project)
        output_path.write_text(content, encoding="utf-8")

    @property
    @abstractmethod
    def format_name(self) -> str:
        """Return the output format name, like "markdown"."""
        ...

    @property
    @abstractmethod
    def default_extension(self) -> str:
        """Return the default file extension, like ".md"."""
        ...
