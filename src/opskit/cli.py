"""Command-line interface for opskit."""

import functools
import sys
from pathlib import Path
from typing import Optional

import click
import httpx

from opskit import fs, shell
from opskit.config import Settings
from opskit.context import OpsContext
from opskit.errors import OperationCancelled, OpsError
from opskit.fs import OverwritePolicy


def handle_errors(func):
    """Top-level handler: log the failure and exit with a non-zero status."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except OperationCancelled:
            click.echo("Cancelled", err=True)
            sys.exit(130)
        except OpsError as e:
            click.echo(f"Error ({e.kind.value}): {e}", err=True)
            sys.exit(1)
        except (OSError, httpx.HTTPError) as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    return wrapper


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--log", "log_file", type=click.Path(dir_okay=False, path_type=Path), help="Write log to file")
@click.option("--passive", is_flag=True, help="Never prompt; use defaults")
@click.option("--pause", is_flag=True, help="Wait for Enter before exiting")
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML settings file",
)
@click.pass_context
@handle_errors
def main(
    ctx: click.Context,
    debug: bool,
    log_file: Optional[Path],
    passive: bool,
    pause: bool,
    config_file: Optional[Path],
):
    """Retry-aware process, network and file-system helpers."""
    settings = Settings.from_yaml(config_file) if config_file else Settings()
    settings = Settings.from_env(base=settings)

    overrides = {"debug": debug, "passive": passive, "pause": pause}
    settings = settings.model_copy(update={k: True for k, v in overrides.items() if v})
    if log_file:
        settings = settings.model_copy(update={"log_file": log_file})

    ops = OpsContext.create(settings)
    ctx.call_on_close(ops.close)
    ctx.obj = ops


@main.command()
@click.argument("name")
@handle_errors
def which(name: str):
    """Locate an executable on the search path."""
    path = shell.find_executable(name)
    if path is None:
        click.echo(f"{name} not found", err=True)
        sys.exit(1)
    click.echo(str(path))


@main.command(context_settings={"ignore_unknown_options": True})
@click.argument("program")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.option("--cwd", type=click.Path(exists=True, file_okay=False, path_type=Path), default=None)
@click.option("--check", is_flag=True, help="Fail on a non-zero exit code")
@click.pass_obj
@handle_errors
def run(ops: OpsContext, program: str, args: tuple[str, ...], cwd: Optional[Path], check: bool):
    """Run PROGRAM with ARGS and print its output."""
    executable = shell.require_executable(program)
    if check:
        click.echo(shell.run_and_fail_if_nonzero(executable, *args, cwd=cwd, cancellation=ops.cancellation), nl=False)
        return

    result = shell.run(executable, *args, cwd=cwd, cancellation=ops.cancellation)
    click.echo(result.stdout, nl=False)
    if result.stderr:
        click.echo(result.stderr, err=True, nl=False)
    sys.exit(result.exit_code)


@main.command()
@click.argument("url")
@click.argument("destination", type=click.Path(dir_okay=False, path_type=Path))
@click.pass_obj
@handle_errors
def download(ops: OpsContext, url: str, destination: Path):
    """Download URL to DESTINATION atomically."""
    path = ops.web_client.download(url, destination, ops.cancellation)
    click.echo(str(path))


@main.command()
@click.argument("path", type=click.Path(path_type=Path))
@click.option("--trash", is_flag=True, help="Send to the recycle bin instead")
@click.pass_obj
@handle_errors
def delete(ops: OpsContext, path: Path, trash: bool):
    """Delete a file or directory, clearing read-only flags if needed."""
    if trash:
        fs.delete_to_recycle_bin(path, ops.cancellation)
    else:
        fs.delete(path, ops.cancellation)


@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("directory", type=click.Path(file_okay=False, path_type=Path))
@click.option(
    "--policy",
    type=click.Choice([p.value for p in OverwritePolicy]),
    default=OverwritePolicy.REJECT.value,
    show_default=True,
    help="What to do when the target already exists",
)
@handle_errors
def move(file: Path, directory: Path, policy: str):
    """Move FILE into DIRECTORY."""
    click.echo(str(fs.move_file_into_directory(file, directory, OverwritePolicy(policy))))


@main.command()
@click.argument("url")
@click.argument("directory", type=click.Path(file_okay=False, path_type=Path))
@click.option("--branch", default=None, help="Branch to check out after cloning")
@click.pass_obj
@handle_errors
def clone(ops: OpsContext, url: str, directory: Path, branch: Optional[str]):
    """Clone URL under DIRECTORY unless a clone already exists."""
    repo = ops.repo(url).clone_if_not_exist_under(directory)
    if branch:
        repo.checkout(branch)
    click.echo(str(repo.root))


@main.command()
@click.argument("packages", nargs=-1, required=True)
@click.option("--upgrade", is_flag=True, help="Upgrade packages that are already installed")
@click.pass_obj
@handle_errors
def choco(ops: OpsContext, packages: tuple[str, ...], upgrade: bool):
    """Install PACKAGES with chocolatey."""
    client = ops.chocolatey()
    outcome = client.install_or_upgrade(*packages) if upgrade else client.install(*packages)
    click.echo(outcome.name)


if __name__ == "__main__":
    main()
