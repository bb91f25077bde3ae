import traceback
import typer
import yaml
from pathlib import Path
from typing import Callable, Optional
from pydantic import ValidationError
from medorg.config.loader import load_config
from medorg.config.models import AppConfig
from medorg.domain.errors import MedorgError
from medorg.infrastructure.cancellation import CancellationToken, install_interrupt_handler
from medorg.infrastructure.event_bus import EventBus
from medorg.infrastructure.logging import setup_logging
from medorg.pipeline.workflows import Workflow, run_workflow
from medorg.ui.reporting import ConsoleReporter

DEFAULT_CONFIG_PATH = Path("conf/medorg.yaml")

app = typer.Typer(help="medorg - media directory organizer")


def _load_app_config(config_path: Optional[Path]) -> AppConfig:
    # The default path is optional; an explicitly passed one must exist
    if config_path is None or (config_path == DEFAULT_CONFIG_PATH and not config_path.exists()):
        return AppConfig()
    return load_config(config_path)


def _run(
    workflow: Workflow,
    directory: Path,
    config_path: Optional[Path],
    debug: bool,
    log_path: Optional[Path],
    configure: Optional[Callable[[AppConfig], None]] = None,
) -> None:
    try:
        config = _load_app_config(config_path)
    except (FileNotFoundError, ValidationError, ValueError, yaml.YAMLError) as e:
        typer.secho(f"Error: invalid config: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    if debug:
        config.general.debug = True
    if log_path is not None:
        config.general.log_path = str(log_path)
    if configure is not None:
        configure(config)

    directory = directory.expanduser().resolve()
    if not directory.is_dir():
        typer.secho(f"Error: not a directory: {directory}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    log_path_value = Path(config.general.log_path) if config.general.log_path else None
    logger = setup_logging(directory, debug=config.general.debug, log_path=log_path_value)
    logger.info(f"medorg started: workflow={workflow.value} directory={directory}")

    bus = EventBus()
    ConsoleReporter(bus, verbose=config.general.debug)
    token = CancellationToken()
    restore_handler = install_interrupt_handler(token)

    try:
        summary = run_workflow(workflow, directory, config, token, event_bus=bus)
    except KeyboardInterrupt:
        logger.warning("Aborted by second Ctrl+C")
        typer.secho("\nStopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)
    except MedorgError as e:
        logger.error(f"Fatal: {e}")
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    except Exception as e:
        logger.error(f"Fatal: {e}\n{traceback.format_exc()}")
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    finally:
        restore_handler()

    if summary.cancelled or token.is_set():
        typer.secho("Stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)


ConfigOption = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to YAML config")
DebugOption = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging")
LogPathOption = typer.Option(None, "--log-path", help="Path to log file (default: <directory>/medorg.log)")


@app.command()
def encode(
    directory: Path = typer.Argument(..., help="Directory with videos to re-encode"),
    config_path: Optional[Path] = ConfigOption,
    debug: bool = DebugOption,
    log_path: Optional[Path] = LogPathOption,
):
    """Re-encode videos to HEVC + FLAC (.convert.mkv), admitting jobs by CPU load."""
    _run(Workflow.ENCODE, directory, config_path, debug, log_path)


@app.command()
def dedup(
    directory: Path = typer.Argument(..., help="Directory to check for duplicate files"),
    config_path: Optional[Path] = ConfigOption,
    debug: bool = DebugOption,
    log_path: Optional[Path] = LogPathOption,
):
    """Move files with identical content into duplication_file/."""
    _run(Workflow.DEDUP, directory, config_path, debug, log_path)


@app.command("contact-sheet")
def contact_sheet(
    directory: Path = typer.Argument(..., help="Directory with videos"),
    config_path: Optional[Path] = ConfigOption,
    debug: bool = DebugOption,
    log_path: Optional[Path] = LogPathOption,
):
    """Write a scene-aware thumbnail grid per video into _contact_sheets/."""
    _run(Workflow.CONTACT_SHEET, directory, config_path, debug, log_path)


@app.command()
def categorize(
    directory: Path = typer.Argument(..., help="Directory to sort by file type"),
    config_path: Optional[Path] = ConfigOption,
    debug: bool = DebugOption,
    log_path: Optional[Path] = LogPathOption,
):
    """Move files into category folders by extension."""
    _run(Workflow.CATEGORIZE, directory, config_path, debug, log_path)


@app.command()
def orphans(
    directory: Path = typer.Argument(..., help="Directory whose top-level files are grouped by name"),
    config_path: Optional[Path] = ConfigOption,
    debug: bool = DebugOption,
    log_path: Optional[Path] = LogPathOption,
):
    """Move files with no same-named sibling into orphan_files/."""
    _run(Workflow.ORPHANS, directory, config_path, debug, log_path)


@app.command()
def rename(
    directory: Path = typer.Argument(..., help="Directory with videos to renumber by duration"),
    config_path: Optional[Path] = ConfigOption,
    debug: bool = DebugOption,
    log_path: Optional[Path] = LogPathOption,
    start_index: Optional[int] = typer.Option(None, "--start-index", min=0, help="Number given to the shortest video"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only log the planned names"),
):
    """Rename videos in place, numbered by duration, shortest first."""

    def configure(config: AppConfig) -> None:
        if start_index is not None:
            config.rename.start_index = start_index
        if dry_run:
            config.rename.dry_run = True

    _run(Workflow.RENAME, directory, config_path, debug, log_path, configure)


if __name__ == "__main__":
    app()
