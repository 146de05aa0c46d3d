"""Command-line interface for binsync."""

from __future__ import annotations

import fnmatch
import io
from pathlib import Path
from typing import Iterable, Sequence

import tomli_w
import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table

from . import __version__
from .config import (
    DEFAULT_CONFIG_FILENAME,
    DEFAULT_SOURCES,
    ArtifactSource,
    Config,
    ConfigError,
    duplicate_source,
    load_config,
    load_sources,
    save_sources,
    user_config_dir,
    user_data_dir,
)
from .controller import DirectoryPicker, SyncController
from .errors import BinsyncError, TransferFailed
from .log import configure_logging, install_exception_hooks, write_crash_report
from .matcher import tracked_status
from .models import InstalledArtifact, InstalledStatus, ProgressEvent, ScanReport, SyncOutcome, TrackedArtifact
from .updater import RetryDecision, SelfUpdater
from .vcs import GitClient, VersionControl

app = typer.Typer(help="Keep a directory of .jar artifacts in sync with git repositories")
sources_app = typer.Typer(help="Inspect and edit the list of artifact sources")
app.add_typer(sources_app, name="sources")
console = Console()

_crash_dir: Path = user_data_dir() / "logs"


def _load_config(config: Path | None, verbose: bool = False) -> Config:
    global _crash_dir

    configure_logging(verbose)
    config_obj = load_config(config)
    _crash_dir = config_obj.settings.log_dir
    return config_obj


def _make_vcs(config: Config) -> VersionControl:
    return GitClient(config.settings.git_executable)


def _build_updater(config: Config) -> SelfUpdater | None:
    return SelfUpdater.from_settings(config.updates, __version__)


def _load_controller(config: Path | None, verbose: bool = False) -> SyncController:
    config_obj = _load_config(config, verbose)
    sources = load_sources(config_obj.settings.sources_path)
    return SyncController(
        config_obj,
        sources,
        vcs=_make_vcs(config_obj),
        progress=_print_progress if verbose else None,
    )


def _handle_error(exc: Exception) -> None:
    if isinstance(exc, PermissionError):
        console.print("[red]Permission denied.[/red] Check that the target directory is writable.")
        raise typer.Exit(code=1)
    if isinstance(exc, ConfigError):
        message = str(exc)
        console.print(f"[red]{escape(message)}[/red]")
        if "does not exist" in message:
            console.print("[yellow]Use 'binsync init --config <path>' to create a configuration file.[/yellow]")
        elif "Expected to find" in message:
            console.print(
                "[yellow]Make sure you pointed to the directory containing the config file, or to the file itself.[/yellow]"
            )
        raise typer.Exit(code=1)
    if isinstance(exc, BinsyncError):
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=1)
    if isinstance(exc, (typer.Exit, typer.Abort)):
        raise exc

    report = write_crash_report(exc, _crash_dir)
    if report is not None:
        console.print(f"[red]Unexpected error: {exc}[/red] Details were written to '{report}'.")
    raise exc


def _print_progress(event: ProgressEvent) -> None:
    if event.label:
        console.print(f"[dim]{event.label}[/dim]")


def _short(revision: str) -> str:
    return revision[:8] if revision else "-"


def _format_sources(sources: Iterable[ArtifactSource]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Name")
    table.add_column("Address", overflow="fold")
    table.add_column("Pattern")

    for source in sources:
        table.add_row(source.name, source.address, source.pattern)

    console.print(table)


def _format_scan_reports(reports: Iterable[ScanReport]) -> None:
    for report in reports:
        if not report.ok:
            console.print(f"[yellow]{escape(report.source_name)}: {escape(report.error or '')}[/yellow]")


def _format_tracked(artifacts: Iterable[TrackedArtifact], revisions: dict[str, str]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Source")
    table.add_column("Path", overflow="fold")
    table.add_column("Revision")
    table.add_column("Date")
    table.add_column("Status")

    for artifact in artifacts:
        table.add_row(
            artifact.source_name,
            artifact.relative_path,
            _short(artifact.revision),
            artifact.revision_date or "-",
            tracked_status(artifact, revisions),
        )

    console.print(table)


def _format_installed(installed: Iterable[InstalledArtifact]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("File", overflow="fold")
    table.add_column("Source")
    table.add_column("Remote")
    table.add_column("State")

    status_styles = {
        InstalledStatus.UP_TO_DATE: "green",
        InstalledStatus.OUTDATED: "red",
        InstalledStatus.MATCHED_UNTRACKED: "yellow",
        InstalledStatus.UNMANAGED: "white",
        InstalledStatus.DIAGNOSTIC: "yellow",
    }

    for item in installed:
        style = status_styles.get(item.status, "white")
        if item.is_diagnostic:
            table.add_row(f"[{style}]{item.file_name}[/{style}]", "", "", "")
            continue
        table.add_row(
            item.file_name,
            item.source_name or "-",
            _short(item.remote_revision) if item.matched else "-",
            f"[{style}]{item.describe()}[/{style}]",
        )

    console.print(table)


def _format_outcomes(outcomes: Iterable[SyncOutcome]) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("File", overflow="fold")
    table.add_column("Action")
    table.add_column("Result")
    table.add_column("Details", overflow="fold")

    for outcome in outcomes:
        result = "[green]ok[/green]" if outcome.ok else "[red]failed[/red]"
        details = outcome.message or (f"revision {_short(outcome.revision)}" if outcome.revision else "")
        table.add_row(outcome.file_name, outcome.action.value, result, details)

    console.print(table)


def _finish_batch(outcomes: Sequence[SyncOutcome]) -> None:
    _format_outcomes(outcomes)
    failed = sum(1 for outcome in outcomes if not outcome.ok)
    if failed:
        console.print(f"[red]{failed} of {len(outcomes)} item(s) failed.[/red]")
        raise typer.Exit(code=1)


def _select_tracked(
    artifacts: Iterable[TrackedArtifact],
    patterns: Sequence[str],
) -> list[TrackedArtifact]:
    """Pick artifacts whose file name matches a glob; the first source wins per name."""

    lowered = [pattern.lower() for pattern in patterns]
    chosen: dict[str, TrackedArtifact] = {}
    for artifact in artifacts:
        name = artifact.file_name.lower()
        if name in chosen:
            continue
        if any(fnmatch.fnmatchcase(name, pattern) for pattern in lowered):
            chosen[name] = artifact
    return list(chosen.values())


def _select_installed(installed: Iterable[InstalledArtifact], names: Sequence[str]) -> list[InstalledArtifact]:
    by_name = {item.file_name.lower(): item for item in installed if not item.is_diagnostic}
    selected: list[InstalledArtifact] = []
    for name in names:
        item = by_name.get(Path(name).name.lower())
        if item is None:
            console.print(f"[yellow]'{name}' is not in the target directory; skipping.[/yellow]")
            continue
        item.selected = True
        selected.append(item)
    return selected


def _require_installed_listing(controller: SyncController) -> list[InstalledArtifact]:
    installed = controller.refresh_installed()
    if len(installed) == 1 and installed[0].is_diagnostic:
        console.print(f"[red]{installed[0].file_name}[/red]")
        console.print("[yellow]Use 'binsync target <path>' to choose one.[/yellow]")
        raise typer.Exit(code=1)
    return installed


def _render_init_config(target: str | None) -> str:
    buffer = io.StringIO()
    buffer.write("# binsync configuration\n\n")
    settings: dict[str, object] = {"artifact_suffix": ".jar", "history_depth": 1, "scan_workers": 1}
    if target:
        settings["target_directory"] = target
    buffer.write(tomli_w.dumps({"settings": settings}))
    buffer.write(
        """
[updates]
# Release feed for 'binsync self-update'; leave empty to disable.
owner = ""
repo = ""
"""
    )
    return buffer.getvalue()


class PromptDirectoryPicker(DirectoryPicker):
    """Asks for the target directory on the terminal."""

    def __init__(self, current: Path | None = None) -> None:
        self.current = current

    def pick_directory(self) -> Path | None:
        answer = typer.prompt(
            "Target directory",
            default=str(self.current) if self.current else "",
            show_default=bool(self.current),
        ).strip()
        if not answer:
            return None
        chosen = Path(answer).expanduser()
        if not chosen.is_dir():
            console.print(f"[red]'{chosen}' is not a directory.[/red]")
            return None
        return chosen


@app.command()
def init(
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to write the configuration file (defaults to the per-user {DEFAULT_CONFIG_FILENAME})",
        dir_okay=False,
        writable=True,
    ),
    target: Path | None = typer.Option(None, "--target", "-t", help="Directory the artifacts are installed into"),
    force: bool = typer.Option(False, "--force", help="Overwrite existing config if present"),
) -> None:
    """Create a starter binsync configuration and source list."""

    config_path = config or user_config_dir() / DEFAULT_CONFIG_FILENAME
    if config_path.exists() and not force:
        console.print(f"[red]Configuration '{config_path}' already exists. Use --force to overwrite.[/red]")
        raise typer.Exit(code=1)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    target_text = str(target.expanduser().resolve(strict=False)) if target else None
    config_path.write_text(_render_init_config(target_text))
    console.print(f"[green]Created '{config_path}'.[/green]")

    sources_path = config_path.parent / "sources.toml"
    if not sources_path.exists():
        save_sources(sources_path, DEFAULT_SOURCES)
        console.print(f"[green]Created '{sources_path}' with {len(DEFAULT_SOURCES)} default sources.[/green]")


@sources_app.command("list")
def sources_list(
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to binsync.toml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    """Show the configured sources in scan order."""

    try:
        config_obj = _load_config(config, verbose)
        _format_sources(load_sources(config_obj.settings.sources_path))
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@sources_app.command("add")
def sources_add(
    name: str = typer.Argument(..., help="Display name of the source"),
    address: str = typer.Argument(..., help="Git address of the repository"),
    pattern: str | None = typer.Option(None, "--pattern", "-p", help="Regular expression selecting artifact paths"),
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to binsync.toml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    """Append a source to the list."""

    try:
        config_obj = _load_config(config, verbose)
        path = config_obj.settings.sources_path
        sources = load_sources(path)
        if any(source.name.lower() == name.strip().lower() for source in sources):
            raise ConfigError(f"A source named '{name}' already exists")
        fields = {"name": name, "address": address}
        if pattern:
            fields["pattern"] = pattern
        try:
            sources.append(ArtifactSource(**fields))
        except ValueError as exc:
            raise ConfigError(f"Invalid source: {exc}") from exc
        conflict = duplicate_source(sources)
        if conflict:
            raise ConfigError(conflict)
        save_sources(path, sources)
        console.print(f"[green]Added source '{name}'.[/green]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@sources_app.command("edit")
def sources_edit(
    name: str = typer.Argument(..., help="Name of the source to change"),
    address: str | None = typer.Option(None, "--address", help="New git address"),
    pattern: str | None = typer.Option(None, "--pattern", "-p", help="New artifact path pattern"),
    rename: str | None = typer.Option(None, "--rename", help="New display name"),
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to binsync.toml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    """Change a source in place, keeping its position in the scan order."""

    try:
        config_obj = _load_config(config, verbose)
        path = config_obj.settings.sources_path
        sources = load_sources(path)
        lowered = name.strip().lower()
        index = next((i for i, source in enumerate(sources) if source.name.lower() == lowered), None)
        if index is None:
            raise ConfigError(f"No source named '{name}'")
        if rename and any(
            i != index and source.name.lower() == rename.strip().lower() for i, source in enumerate(sources)
        ):
            raise ConfigError(f"A source named '{rename}' already exists")

        current = sources[index]
        fields = {
            "name": rename or current.name,
            "address": address or current.address,
            "pattern": pattern or current.pattern,
        }
        try:
            sources[index] = ArtifactSource(**fields)
        except ValueError as exc:
            raise ConfigError(f"Invalid source: {exc}") from exc
        conflict = duplicate_source(sources)
        if conflict:
            raise ConfigError(conflict)
        save_sources(path, sources)
        console.print(f"[green]Updated source '{sources[index].name}'.[/green]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@sources_app.command("remove")
def sources_remove(
    name: str = typer.Argument(..., help="Name of the source to remove"),
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to binsync.toml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    """Remove a source from the list."""

    try:
        config_obj = _load_config(config, verbose)
        path = config_obj.settings.sources_path
        sources = load_sources(path)
        remaining = [source for source in sources if source.name.lower() != name.strip().lower()]
        if len(remaining) == len(sources):
            raise ConfigError(f"No source named '{name}'")
        save_sources(path, remaining)
        console.print(f"[green]Removed source '{name}'.[/green]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def scan(
    source: str | None = typer.Option(None, "--source", "-s", help="Scan a single source by name"),
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to binsync.toml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    """List the artifacts each source currently publishes."""

    try:
        controller = _load_controller(config, verbose)
        if source:
            selected = controller.source(source)
            if selected is None:
                raise ConfigError(f"No source named '{source}'")
            reports = [controller.scan_source(selected)]
        else:
            reports = controller.scan_all_sources()

        _format_scan_reports(reports)
        artifacts = [artifact for report in reports for artifact in report.artifacts]
        _format_tracked(artifacts, controller.revisions)
        if not any(report.ok for report in reports):
            raise typer.Exit(code=1)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def status(
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to binsync.toml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    """Scan every source and show how the target directory compares."""

    try:
        controller = _load_controller(config, verbose)
        _format_scan_reports(controller.scan_all_sources())
        installed = controller.refresh_installed()
        _format_installed(installed)
        if any(item.status is InstalledStatus.OUTDATED for item in installed):
            console.print("[yellow]Some artifacts are outdated. Run 'binsync update --all' to refresh them.[/yellow]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def install(
    patterns: list[str] = typer.Argument(..., help="File names or globs of artifacts to install"),
    source: str | None = typer.Option(None, "--source", "-s", help="Only install from this source"),
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to binsync.toml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    """Copy matching artifacts from their sources into the target directory."""

    try:
        controller = _load_controller(config, verbose)
        if source:
            selected_source = controller.source(source)
            if selected_source is None:
                raise ConfigError(f"No source named '{source}'")
            reports = [controller.scan_source(selected_source)]
        else:
            reports = controller.scan_all_sources()
        _format_scan_reports(reports)

        artifacts = [artifact for report in reports for artifact in report.artifacts]
        selection = _select_tracked(artifacts, patterns)
        if not selection:
            console.print("[yellow]No scanned artifact matches the given names.[/yellow]")
            raise typer.Exit(code=1)
        _finish_batch(controller.install(selection))
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def update(
    files: list[str] = typer.Argument(None, help="Installed file names to update"),
    all_: bool = typer.Option(False, "--all", "-a", help="Update every installed artifact a source provides"),
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to binsync.toml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    """Re-copy installed artifacts at the revision their source currently publishes."""

    if not files and not all_:
        console.print("[red]Name the files to update or pass --all.[/red]")
        raise typer.Exit(code=1)

    try:
        controller = _load_controller(config, verbose)
        _format_scan_reports(controller.scan_all_sources())
        installed = _require_installed_listing(controller)
        if all_:
            outcomes = controller.update_all()
        else:
            selection = _select_installed(installed, files)
            if not selection:
                raise typer.Exit(code=1)
            outcomes = controller.update_selected(selection)
        if not outcomes:
            console.print("[yellow]Nothing to update.[/yellow]")
            return
        _finish_batch(outcomes)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def delete(
    files: list[str] = typer.Argument(..., help="Installed file names to delete"),
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to binsync.toml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    """Remove artifacts from the target directory and forget their revisions."""

    try:
        controller = _load_controller(config, verbose)
        _format_scan_reports(controller.scan_all_sources())
        installed = _require_installed_listing(controller)
        selection = _select_installed(installed, files)
        if not selection:
            raise typer.Exit(code=1)
        _finish_batch(controller.delete(selection))
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def target(
    path: Path | None = typer.Argument(None, help="New target directory"),
    pick: bool = typer.Option(False, "--pick", help="Prompt for the directory interactively"),
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to binsync.toml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    """Show or change the directory artifacts are installed into."""

    try:
        controller = _load_controller(config, verbose)
        if pick:
            chosen = controller.choose_target_directory(PromptDirectoryPicker(controller.target_directory))
            if chosen is None:
                console.print("[yellow]Target directory unchanged.[/yellow]")
                return
            console.print(f"[green]Target directory set to '{chosen}'.[/green]")
            return
        if path is None:
            current = controller.target_directory
            if current is None:
                console.print("[yellow]No target directory configured.[/yellow]")
                raise typer.Exit(code=1)
            console.print(str(current), soft_wrap=True)
            return
        if not path.expanduser().is_dir():
            console.print(f"[red]'{path}' is not a directory.[/red]")
            raise typer.Exit(code=1)
        controller.set_target_directory(path)
        console.print(f"[green]Target directory set to '{controller.target_directory}'.[/green]")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


def _ask_after_failure(error: TransferFailed, attempt: int, limit: int) -> RetryDecision:
    console.print(f"[red]{error}[/red] (attempt {attempt} of {limit})")
    answer = typer.prompt("Retry, skip this version, or abandon? [r/s/a]", default="r").strip().lower()
    if answer.startswith("s"):
        return RetryDecision.SKIP
    if answer.startswith("a"):
        return RetryDecision.ABANDON
    return RetryDecision.RETRY


@app.command("self-update")
def self_update(
    check: bool = typer.Option(False, "--check", help="Only report whether a newer release exists"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Download without asking and retry on failure"),
    config: Path | None = typer.Option(None, "--config", "-c", help="Path to binsync.toml"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    """Check the release feed and download a newer installer."""

    try:
        config_obj = _load_config(config, verbose)
        updater = _build_updater(config_obj)
        if updater is None:
            console.print(
                "[yellow]No release feed configured; set owner and repo in the updates table of the config file.[/yellow]"
            )
            return

        release = updater.check()
        if release is None:
            console.print(f"[green]binsync {__version__} is up to date.[/green]")
            return

        console.print(f"[bold]Release {release.tag}[/bold] is available (running {__version__}).")
        if release.page_url:
            console.print(release.page_url)
        if check:
            return

        if not yes:
            answer = typer.prompt("Download it now? [y]es / [n]o / [s]kip this version", default="y").strip().lower()
            if answer.startswith("s"):
                if updater.preferences is not None:
                    updater.preferences.skip(release.tag)
                console.print(f"[yellow]Release {release.tag} will not be offered again.[/yellow]")
                return
            if not answer.startswith("y"):
                return

        on_failure = (lambda _error, _attempt, _limit: RetryDecision.RETRY) if yes else _ask_after_failure
        with Progress(
            TextColumn("{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task(f"Downloading {release.asset_name}", total=1.0)
            downloaded = updater.download(
                release,
                config_obj.updates.download_dir,
                progress=lambda fraction: progress.update(task, completed=fraction),
                on_failure=on_failure,
            )

        if downloaded is None:
            console.print("[yellow]Update abandoned.[/yellow]")
            return
        console.print(f"[green]Downloaded '{downloaded}'.[/green] Run it to finish the upgrade.")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def version() -> None:
    """Print the installed binsync version."""

    console.print(__version__)


def run() -> None:
    """Entry point used for console_script bindings."""

    install_exception_hooks(lambda: _crash_dir, notifier=lambda message: console.print(f"[red]{message}[/red]"))
    app()
