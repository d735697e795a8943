"""Command-line interface for the release signing toolkit."""

import logging
import sys
from pathlib import Path
from typing import NoReturn, Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .config import KEY_DIR_ENV_VAR, SignerConfig, generate_default_config, load_config
from .release import ReleaseManager

console = Console()
err_console = Console(stderr=True)


def _fail(message: str) -> NoReturn:
    console.print(f"[bold red]✗[/bold red] {message}")
    sys.exit(1)


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    )


@click.group()
@click.version_option(version=__version__, prog_name="relsign")
@click.option("--config", "-c", type=click.Path(exists=True, dir_okay=False), help="Configuration file path")
@click.option(
    "--key-dir",
    type=click.Path(file_okay=False),
    envvar=KEY_DIR_ENV_VAR,
    help="Private key storage directory",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.pass_context
def main(ctx: click.Context, config: Optional[str], key_dir: Optional[str], verbose: bool) -> None:
    """Release signing toolkit.

    Generate Ed25519 release keys, sign payloads into release archives and
    verify them against a public key.
    """
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    try:
        signer_config = load_config(Path(config)) if config else SignerConfig()
    except (OSError, ValueError, ValidationError) as e:
        _fail(f"Invalid configuration: {e}")

    if key_dir:
        signer_config = signer_config.with_key_directory(Path(key_dir))
    ctx.obj["config"] = signer_config


def _manager(ctx: click.Context) -> ReleaseManager:
    return ReleaseManager(ctx.obj["config"])


@main.command()
@click.option("--password", "-p", default=None, help="Password protecting the private key")
@click.option("--move-old", "-m", default=None, help="Version of the previous release; archives the current key under it")
@click.option("--ignore-move-old", is_flag=True, help="Discard the current private key instead of archiving it")
@click.option("--output", "-o", type=click.Path(dir_okay=False), required=True, help="Output public key file")
@click.pass_context
def generatekeys(
    ctx: click.Context,
    password: Optional[str],
    move_old: Optional[str],
    ignore_move_old: bool,
    output: str,
) -> None:
    """Generate a new key pair for the next release."""
    verbose: bool = ctx.obj["verbose"]
    output_path = Path(output)
    manager = _manager(ctx)

    with _progress() as progress:
        task = progress.add_task("Generating Ed25519 keypair...", total=1)
        try:
            outcome = manager.generate_keys(password, move_old, ignore_move_old, output_path)
        except (OSError, ValueError) as e:
            progress.stop()
            _fail(f"Key generation failed: {e}")
        progress.update(task, completed=1)

    if not outcome.ok:
        _fail(str(outcome.error))

    console.print("[bold green]✓[/bold green] Generated new key pair; new private key is now current")
    console.print(f"Password was {'' if outcome.password_set else 'not '}set")
    if outcome.archived_as:
        console.print(f"Old private key moved as {outcome.archived_as}")
    console.print(f"New public key written to {outcome.public_key_path}")

    if verbose:
        table = Table(title="Key Information")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Algorithm", "Ed25519")
        table.add_row("Protection", outcome.protector)
        table.add_row("Key Directory", str(manager.store.root))
        table.add_row("Public Key", outcome.public_key.hex())
        table.add_row("Fingerprint (SHA-256)", outcome.fingerprint)
        console.print(table)


@main.command()
@click.option("--input", "-i", "input_path", type=click.Path(exists=True, dir_okay=False), required=True, help="Payload file to sign")
@click.option("--output", "-o", type=click.Path(dir_okay=False), required=True, help="Output release archive")
@click.option("--password", "-p", default=None, help="Password of the private key")
@click.option("--private-key", "-k", "key_name", default=None, help="Sign with the archived key of this version")
@click.pass_context
def sign(
    ctx: click.Context,
    input_path: str,
    output: str,
    password: Optional[str],
    key_name: Optional[str],
) -> None:
    """Sign a payload into a release archive."""
    verbose: bool = ctx.obj["verbose"]
    manager = _manager(ctx)

    if key_name:
        console.print(f"Using archived private key (version {key_name})")

    with _progress() as progress:
        task = progress.add_task("Reading payload...", total=1)
        try:
            payload = Path(input_path).read_bytes()
        except OSError as e:
            progress.stop()
            _fail(f"Cannot read payload: {e}")
        progress.update(task, completed=1)

        task = progress.add_task("Signing payload...", total=1)
        try:
            outcome = manager.sign_release(payload, Path(output), password, key_name)
        except (OSError, ValueError) as e:
            progress.stop()
            _fail(f"Signing failed: {e}")
        progress.update(task, completed=1)

    if not outcome.ok:
        _fail(str(outcome.error))

    if outcome.backup_path:
        console.print(f"Moved existing {outcome.archive_path} to {outcome.backup_path}")
    console.print(
        f"[bold green]✓[/bold green] Signed: {outcome.archive_path} ({outcome.archive_size} bytes)"
    )

    if verbose:
        table = Table(title="Signature Details")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Key", outcome.key_name)
        table.add_row("Payload Size", f"{len(payload)} bytes")
        table.add_row("Payload SHA-256", outcome.payload_digest)
        table.add_row("Signature", outcome.signature.hex()[:32] + "...")
        console.print(table)


@main.command()
@click.option(
    "--output",
    "-o",
    "--public-key",
    "public_key",
    type=click.Path(exists=True, dir_okay=False),
    required=True,
    help="Public key file",
)
@click.argument("archive", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def verify(ctx: click.Context, public_key: str, archive: str) -> None:
    """Verify a release archive against a public key."""
    verbose: bool = ctx.obj["verbose"]
    manager = _manager(ctx)

    try:
        public_key_bytes = Path(public_key).read_bytes()
    except OSError as e:
        _fail(f"Cannot read public key: {e}")

    outcome = manager.verify_release(Path(archive), public_key_bytes)
    if not outcome.ok:
        _fail(str(outcome.error))

    if verbose:
        table = Table(title="Verification Results")
        table.add_column("Check", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Payload Size", f"{outcome.payload_size} bytes")
        table.add_row("Payload SHA-256", outcome.payload_digest)
        table.add_row("Signature", "✓ PASS" if outcome.valid else "✗ FAIL")
        console.print(table)

    if outcome.valid:
        console.print("[bold green]✓[/bold green] Signature verified")
    else:
        _fail("Signature verification failed")


@main.command()
@click.pass_context
def listkeys(ctx: click.Context) -> None:
    """List stored private keys."""
    manager = _manager(ctx)
    keys = manager.list_keys()

    if not keys:
        console.print(f"No private keys in {manager.store.root}")
        return

    table = Table(title=f"Private Keys ({manager.store.root})")
    table.add_column("Name", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Size")
    for key in keys:
        table.add_row(key.name, "current" if key.is_current else "archived", f"{len(key.encrypted_bytes)} bytes")
    console.print(table)


@main.command()
@click.option("--output", "-o", type=click.Path(dir_okay=False), required=True, help="Output public key file")
@click.option("--password", "-p", default=None, help="Password of the private key")
@click.option("--private-key", "-k", "key_name", default=None, help="Export the key of this archived version")
@click.pass_context
def exportpublic(ctx: click.Context, output: str, password: Optional[str], key_name: Optional[str]) -> None:
    """Export the public key of a stored private key."""
    manager = _manager(ctx)

    try:
        outcome = manager.export_public_key(password, Path(output), key_name)
    except (OSError, ValueError) as e:
        _fail(f"Export failed: {e}")
    if not outcome.ok:
        _fail(str(outcome.error))

    console.print(f"[bold green]✓[/bold green] Public key of {outcome.key_name} saved to {outcome.public_key_path}")


@main.command("init-config")
@click.option("--output", "-o", type=click.Path(dir_okay=False), required=True, help="Configuration file to write")
@click.option("--format", "fmt", type=click.Choice(["yaml", "json"]), default="yaml", help="Configuration format")
def init_config(output: str, fmt: str) -> None:
    """Write a default configuration file."""
    output_path = Path(output)
    if output_path.exists():
        _fail(f"{output_path} already exists")

    output_path.write_text(generate_default_config(fmt))
    console.print(f"[bold green]✓[/bold green] Configuration written to {output_path}")


if __name__ == "__main__":
    main()
