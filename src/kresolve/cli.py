"""Command-line interface for kresolve.

Provides the main entry point and subcommands for locking, checking and
inspecting the dependency graphs of every build variant.
"""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.tree import Tree

from kresolve.cache import DescriptorCache
from kresolve.errors import KResolveError, format_path
from kresolve.lockfile import LOCKFILE_NAME, Lockfile
from kresolve.manifest import MANIFEST_NAME, Manifest, load_manifest
from kresolve.models import Coordinate, ResolvedGraph, Variant
from kresolve.providers import build_provider
from kresolve.reporters import MarkdownReporter
from kresolve.resolver import (
    DependencyResolver,
    ResolutionOutcome,
    check_lock_fresh,
    conflicts as graph_conflicts,
    explain as graph_explain,
)
from kresolve.variants import VariantExpander

app = typer.Typer(
    name="kresolve",
    help="Variant-aware dependency resolution for Kotlin builds.",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)
logger = logging.getLogger("kresolve")

ManifestOption = Annotated[
    Path,
    typer.Option("--manifest", "-m", help="Path to the project manifest"),
]
LockfileOption = Annotated[
    Path,
    typer.Option("--lockfile", "-l", help="Path to the lockfile"),
]
VariantOption = Annotated[
    Optional[str],
    typer.Option("--variant", help="Variant name (defaults to the manifest's default variant)"),
]
ConcurrencyOption = Annotated[
    int,
    typer.Option(
        "--max-concurrency",
        envvar="KRESOLVE_MAX_CONCURRENCY",
        help="Maximum concurrent requests per remote repository",
        min=1,
    ),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable verbose output"),
]


def _setup_logging(verbose: bool) -> None:
    """Configure logging level based on verbosity flag."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.getLogger("kresolve").setLevel(level)


def _fail(message: str) -> None:
    err_console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(code=1)


def _load(manifest_path: Path) -> Manifest:
    try:
        return load_manifest(manifest_path)
    except (FileNotFoundError, KResolveError) as e:
        _fail(str(e))


def _pick_variant(manifest: Manifest, name: Optional[str]) -> Variant:
    expander = VariantExpander(manifest)
    if name is None:
        return expander.default()
    for variant in expander.variants():
        if variant.name == name:
            return variant
    known = ", ".join(v.name for v in expander.variants())
    raise KResolveError(f"Unknown variant '{name}' (known: {known})")


async def _resolve(
    manifest: Manifest,
    base_dir: Path,
    max_concurrency: int,
    lock: Optional[Lockfile] = None,
    update: bool = False,
    variant: Optional[Variant] = None,
) -> dict[Variant, ResolutionOutcome]:
    """Resolve one variant, or all of them, against the manifest's repositories.

    Args:
        manifest: Parsed manifest.
        base_dir: Directory local repository paths are relative to.
        max_concurrency: Request bound for remote repositories.
        lock: Existing lockfile to check against.
        update: Re-resolve stale variants instead of failing.
        variant: Resolve only this variant.

    Returns:
        Each resolved variant mapped to its graph or error.

    Raises:
        KResolveError: If the manifest-wide setup fails, or the single
            requested variant cannot be resolved.
        ValueError: If no repositories are declared.
    """
    provider = build_provider(manifest.repositories, max_concurrency, base_dir)
    async with provider:
        resolver = DependencyResolver(DescriptorCache(provider))
        if variant is not None:
            return {variant: await resolver.resolve(manifest, variant, lock, update)}
        return await resolver.resolve_all(manifest, lock, update)


def _run_resolution(
    manifest: Manifest,
    manifest_path: Path,
    max_concurrency: int,
    lock: Optional[Lockfile] = None,
    update: bool = False,
    variant: Optional[Variant] = None,
) -> dict[Variant, ResolutionOutcome]:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=err_console,
        transient=True,
    ) as progress:
        progress.add_task("Resolving dependencies...", total=None)
        try:
            return asyncio.run(
                _resolve(
                    manifest,
                    manifest_path.parent,
                    max_concurrency,
                    lock=lock,
                    update=update,
                    variant=variant,
                )
            )
        except (KResolveError, ValueError) as e:
            _fail(str(e))


def _single_graph(
    manifest_path: Path, variant_name: Optional[str], max_concurrency: int
) -> ResolvedGraph:
    manifest = _load(manifest_path)
    try:
        variant = _pick_variant(manifest, variant_name)
    except KResolveError as e:
        _fail(str(e))
    outcomes = _run_resolution(manifest, manifest_path, max_concurrency, variant=variant)
    return outcomes[variant]


def _report_failures(outcomes: dict[Variant, ResolutionOutcome]) -> int:
    failed = 0
    for variant, outcome in outcomes.items():
        if isinstance(outcome, ResolvedGraph):
            continue
        failed += 1
        err_console.print(f"[red]{variant.name}:[/red] {outcome}")
    return failed


@app.command()
def lock(
    manifest: ManifestOption = Path(MANIFEST_NAME),
    lockfile: LockfileOption = Path(LOCKFILE_NAME),
    update: Annotated[
        bool,
        typer.Option("--update", "-u", help="Re-resolve variants whose declarations changed"),
    ] = False,
    max_concurrency: ConcurrencyOption = 8,
    verbose: VerboseOption = False,
) -> None:
    """Resolve every variant and write the lockfile.

    An existing lockfile is checked first; stale variants fail unless
    --update is given.
    """
    _setup_logging(verbose)
    project = _load(manifest)

    existing = None
    if lockfile.exists():
        try:
            existing = Lockfile.read(lockfile)
        except KResolveError as e:
            if not update:
                _fail(str(e))
            logger.warning("Ignoring unreadable lockfile %s: %s", lockfile, e)

    outcomes = _run_resolution(project, manifest, max_concurrency, lock=existing, update=update)
    if _report_failures(outcomes):
        raise typer.Exit(code=1)

    graphs = [g for g in outcomes.values() if isinstance(g, ResolvedGraph)]
    Lockfile.from_graphs(graphs).write(lockfile)
    packages = sum(len(g) for g in graphs)
    console.print(
        f"[green]Locked[/green] {len(graphs)} variant(s), {packages} package(s) -> {lockfile}"
    )


@app.command()
def check(
    manifest: ManifestOption = Path(MANIFEST_NAME),
    lockfile: LockfileOption = Path(LOCKFILE_NAME),
    verbose: VerboseOption = False,
) -> None:
    """Check that the lockfile matches the manifest's declarations.

    Exit codes:
        0 - Lockfile is up to date
        1 - Lockfile is stale, missing or an error occurred
    """
    _setup_logging(verbose)
    project = _load(manifest)
    try:
        current = Lockfile.read(lockfile)
        fresh = check_lock_fresh(project, current)
    except (FileNotFoundError, KResolveError) as e:
        _fail(str(e))

    if not fresh:
        err_console.print(
            f"[yellow]{lockfile} is out of date;[/yellow] run 'kresolve lock --update'"
        )
        raise typer.Exit(code=1)
    console.print(f"[green]{lockfile} is up to date[/green]")


@app.command()
def variants(
    manifest: ManifestOption = Path(MANIFEST_NAME),
    verbose: VerboseOption = False,
) -> None:
    """List the build variants of the project."""
    _setup_logging(verbose)
    project = _load(manifest)
    try:
        expander = VariantExpander(project)
        default = expander.default()
        expanded = expander.expand()
    except KResolveError as e:
        _fail(str(e))

    table = Table(title=f"Variants of {project.name}")
    table.add_column("Variant")
    table.add_column("Flavors")
    table.add_column("Profile")
    table.add_column("Declarations", justify="right")
    for variant, dependency_set in expanded:
        name = variant.name + (" (default)" if variant == default else "")
        flavors = ", ".join(f"{d}={f}" for d, f in variant.flavors) or "-"
        table.add_row(name, flavors, variant.profile, str(len(dependency_set)))
    console.print(table)


@app.command()
def tree(
    manifest: ManifestOption = Path(MANIFEST_NAME),
    variant: VariantOption = None,
    depth: Annotated[
        Optional[int],
        typer.Option("--depth", "-d", help="Maximum depth to print", min=1),
    ] = None,
    invert: Annotated[
        Optional[str],
        typer.Option(
            "--invert",
            "-i",
            help="Print the dependents of a group:artifact coordinate instead",
        ),
    ] = None,
    duplicates: Annotated[
        bool,
        typer.Option("--duplicates", help="Only show coordinates requested at several versions"),
    ] = False,
    max_concurrency: ConcurrencyOption = 8,
    verbose: VerboseOption = False,
) -> None:
    """Print the resolved dependency tree of a variant."""
    _setup_logging(verbose)
    if invert is not None and duplicates:
        _fail("--invert and --duplicates cannot be combined")
    target = None
    if invert is not None:
        try:
            target = Coordinate.parse(invert)
        except ValueError as e:
            _fail(str(e))
    graph = _single_graph(manifest, variant, max_concurrency)

    if duplicates:
        _print_duplicates(graph)
        return
    if target is not None:
        if target not in graph:
            err_console.print(f"[yellow]{target} is not in {graph.variant.name}[/yellow]")
            raise typer.Exit(code=1)
        console.print(_inverted_tree(graph, target, depth))
        return

    root = Tree(f"[bold]{graph.variant.name}[/bold]")
    expanded: set[Coordinate] = set()

    def add(branch: Tree, coordinate: Coordinate, level: int) -> None:
        node = graph.nodes[coordinate]
        label = _node_label(graph, coordinate)
        if coordinate in expanded and node.dependencies:
            branch.add(f"{label} [dim](*)[/dim]")
            return
        child = branch.add(label)
        if depth is not None and level >= depth:
            return
        expanded.add(coordinate)
        for dependency, _ in node.dependencies:
            add(child, dependency, level + 1)

    for coordinate in graph.roots:
        add(root, coordinate, 1)
    console.print(root)
    for skipped in graph.skipped:
        console.print(f"[yellow]skipped[/yellow] {skipped.coordinate}: {skipped.reason}")


def _node_label(graph: ResolvedGraph, coordinate: Coordinate) -> str:
    node = graph.nodes[coordinate]
    scopes = ",".join(s.value for s in node.scopes)
    return f"{coordinate}:{node.version} [dim]({scopes})[/dim]"


def _inverted_tree(graph: ResolvedGraph, target: Coordinate, depth: Optional[int]) -> Tree:
    """Build the tree of everything that pulls ``target`` in, down to the roots."""
    roots = set(graph.roots)

    def add(branch: Tree, coordinate: Coordinate, level: int, path: tuple[Coordinate, ...]) -> None:
        for dependent in graph.dependents(coordinate):
            if dependent in path:
                continue
            label = _node_label(graph, dependent)
            if dependent in roots:
                label += " [green](direct)[/green]"
            child = branch.add(label)
            if depth is None or level < depth:
                add(child, dependent, level + 1, path + (dependent,))

    inverted = Tree(f"[bold]{_node_label(graph, target)}[/bold]")
    add(inverted, target, 1, (target,))
    return inverted


def _print_duplicates(graph: ResolvedGraph) -> None:
    found = graph_conflicts(graph)
    if not found:
        console.print(f"[green]No duplicate versions in {graph.variant.name}[/green]")
        return
    for conflict in found:
        branch = Tree(f"[bold]{conflict.coordinate}[/bold]")
        branch.add(f"{conflict.chosen} [green](selected: {conflict.reason})[/green]")
        for candidate in conflict.rejected:
            branch.add(f"{candidate.spec} [dim]via {format_path(candidate.path)}[/dim]")
        console.print(branch)


@app.command()
def explain(
    coordinate: Annotated[str, typer.Argument(help="Coordinate as group:artifact")],
    manifest: ManifestOption = Path(MANIFEST_NAME),
    variant: VariantOption = None,
    max_concurrency: ConcurrencyOption = 8,
    verbose: VerboseOption = False,
) -> None:
    """Show why a coordinate is in a variant's graph."""
    _setup_logging(verbose)
    try:
        target = Coordinate.parse(coordinate)
    except ValueError as e:
        _fail(str(e))
    graph = _single_graph(manifest, variant, max_concurrency)

    paths = graph_explain(graph, target)
    if not paths:
        err_console.print(f"[yellow]{target} is not in {graph.variant.name}[/yellow]")
        raise typer.Exit(code=1)

    console.print(f"[bold]{target}:{graph.version_of(target)}[/bold] in {graph.variant.name}")
    for path in paths:
        console.print(f"  {format_path(path)}")
    for conflict in graph_conflicts(graph):
        if conflict.coordinate == target:
            console.print(f"[yellow]{conflict}[/yellow]")


@app.command()
def conflicts(
    manifest: ManifestOption = Path(MANIFEST_NAME),
    variant: VariantOption = None,
    max_concurrency: ConcurrencyOption = 8,
    verbose: VerboseOption = False,
) -> None:
    """List the version conflicts mediated in a variant."""
    _setup_logging(verbose)
    graph = _single_graph(manifest, variant, max_concurrency)

    found = graph_conflicts(graph)
    if not found:
        console.print(f"[green]No version conflicts in {graph.variant.name}[/green]")
        return
    for conflict in found:
        console.print(f"[bold]{conflict.coordinate}[/bold] -> {conflict.chosen} ({conflict.reason})")
        for candidate in conflict.rejected:
            console.print(f"  {candidate.spec} via {format_path(candidate.path)}")


@app.command()
def report(
    manifest: ManifestOption = Path(MANIFEST_NAME),
    output: Annotated[
        Path,
        typer.Option("--output", "-o", help="Output file path"),
    ] = Path("dependencies.md"),
    template: Annotated[
        Optional[Path],
        typer.Option(
            "--template",
            "-t",
            help="Custom Jinja2 template file",
            exists=True,
            readable=True,
        ),
    ] = None,
    max_concurrency: ConcurrencyOption = 8,
    verbose: VerboseOption = False,
) -> None:
    """Generate a Markdown report of every variant's graph."""
    _setup_logging(verbose)
    project = _load(manifest)
    outcomes = _run_resolution(project, manifest, max_concurrency)

    reporter = MarkdownReporter(template_path=template) if template else MarkdownReporter()
    try:
        reporter.write(outcomes, output, project=project.name)
    except OSError as e:
        _fail(f"Cannot write {output}: {e}")
    console.print(f"[green]Generated:[/green] {output}")
    if _report_failures(outcomes):
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
