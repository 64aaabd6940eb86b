"""Markdown reporter for resolved dependency graphs.

Renders every variant's resolved nodes, mediated conflicts, skipped
optional dependencies and failures with a Jinja2 template.
"""

from datetime import datetime
from importlib.resources import files
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, Template

from kresolve.errors import format_path
from kresolve.models import ResolvedGraph, Variant
from kresolve.reporters.base import BaseReporter
from kresolve.resolver import ResolutionOutcome


class MarkdownReporter(BaseReporter):
    """Reporter that generates a Markdown resolution report.

    Attributes:
        template: The Jinja2 template to use for rendering.
    """

    def __init__(self, template_path: Optional[Path] = None) -> None:
        """Initialize the Markdown reporter.

        Args:
            template_path: Optional path to a custom Jinja2 template.
                If not provided, uses the bundled template.
        """
        if template_path:
            env = Environment(
                loader=FileSystemLoader(template_path.parent),
                autoescape=False,
            )
            self.template = self._configure(env).get_template(template_path.name)
        else:
            self.template = self._load_default_template()

    def _configure(self, env: Environment) -> Environment:
        env.filters["path"] = format_path
        return env

    def _load_default_template(self) -> Template:
        template_content = (
            files("kresolve.templates")
            .joinpath("report.md.j2")
            .read_text(encoding="utf-8")
        )
        env = self._configure(Environment(autoescape=False, trim_blocks=True, lstrip_blocks=True))
        return env.from_string(template_content)

    def render(
        self,
        outcomes: dict[Variant, ResolutionOutcome],
        project: Optional[str] = None,
    ) -> str:
        """Render resolution outcomes to Markdown.

        Graphs are listed in variant order, nodes sorted by coordinate.
        """
        graphs = []
        failures = []
        for variant, outcome in outcomes.items():
            if isinstance(outcome, ResolvedGraph):
                graphs.append(outcome)
            else:
                failures.append((variant, outcome))

        return self.template.render(
            project=project,
            graphs=graphs,
            failures=failures,
            generated_at=datetime.now(),
        )

    @property
    def format_name(self) -> str:
        return "markdown"

    @property
    def default_extension(self) -> str:
        return ".md"
