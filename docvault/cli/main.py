"""docvault CLI - Encrypted document storage with a PIN-gated vault."""

import contextlib
from datetime import timedelta
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.table import Table

from ..vault.exceptions import DocVaultError

app = typer.Typer(
    name="docvault",
    help="Encrypted document storage with a PIN-gated vault.",
    no_args_is_help=True,
)

vault_app = typer.Typer(
    help="Move files into the PIN-protected vault and access them.",
    no_args_is_help=True,
)
app.add_typer(vault_app, name="vault")

console = Console()


USER_OPTION = typer.Option(..., "--user", "-u", envvar="DOCVAULT_USER", help="Acting user id")
ROLE_OPTION = typer.Option("user", "--role", help="Role of the acting user")
BONUS_OPTION = typer.Option(
    0,
    "--department-bonus",
    help="Extra vault bytes granted by the user's department",
)


def _principal(user: str, role: str = "user", department_bonus: int = 0):
    from ..vault.models import Principal

    return Principal(user_id=user, role=role, department_bonus=department_bonus)


def _services():
    """Build services from the environment, exiting on missing configuration."""
    from ..config.settings import Settings
    from ..utils.logging import setup_logging
    from ..vault.exceptions import ConfigurationError
    from ..vault.services import build_services

    settings = Settings.from_env()
    setup_logging(settings.log_level, settings.log_file)

    try:
        return build_services(settings)
    except ConfigurationError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


@contextlib.contextmanager
def _errors() -> Iterator[None]:
    """Report storage and vault errors and exit non-zero."""
    try:
        yield
    except DocVaultError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


def _format_size(size: int) -> str:
    if size < 0:
        return "unlimited"
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


@app.command()
def upload(
    file_path: Path = typer.Argument(..., help="File to encrypt and store"),
    user: str = USER_OPTION,
    content_type: str = typer.Option(
        "application/octet-stream",
        "--content-type", "-t",
        help="MIME type recorded with the file",
    ),
    team: Optional[str] = typer.Option(None, "--team", help="Team id to share with"),
    expires_in_days: Optional[int] = typer.Option(
        None,
        "--expires-in-days",
        help="Delete the file after this many days",
    ),
):
    """
    Encrypt a file and store it.
    """
    if not file_path.exists():
        console.print(f"[red]Error: File not found: {file_path}[/red]")
        raise typer.Exit(1)

    services = _services()
    expires_at = None
    if expires_in_days is not None:
        expires_at = services.files.clock() + timedelta(days=expires_in_days)

    with _errors():
        with open(file_path, "rb") as f:
            stored = services.files.upload(
                f,
                _principal(user),
                file_path.name,
                content_type=content_type,
                team_id=team,
                expires_at=expires_at,
            )

    console.print(f"[green]Stored {stored.original_name}[/green]")
    console.print(f"  File ID: {stored.id}")
    console.print(f"  Size: {_format_size(stored.size)}")
    console.print(f"  SHA-256: {stored.digest}")
    if stored.expires_at:
        console.print(f"  Expires: {stored.expires_at.isoformat()}")


@app.command()
def download(
    file_id: str = typer.Argument(..., help="File id"),
    output: Path = typer.Argument(..., help="Where to write the decrypted file"),
    user: str = USER_OPTION,
    check: bool = typer.Option(
        False,
        "--verify",
        help="Check the recorded digest while decrypting",
    ),
):
    """
    Decrypt a stored file.
    """
    services = _services()
    with _errors():
        stored = services.files.download(file_id, _principal(user), output, verify=check)

    console.print(f"[green]Decrypted {stored.original_name} to {output}[/green]")


@app.command()
def verify(
    file_id: str = typer.Argument(..., help="File id"),
    user: str = USER_OPTION,
):
    """
    Check a stored file against the digest recorded at upload.
    """
    services = _services()
    with _errors():
        ok = services.files.verify(file_id, _principal(user))

    if not ok:
        console.print(f"[red]Integrity check FAILED for {file_id}[/red]")
        raise typer.Exit(2)

    console.print(f"[green]Integrity OK[/green] {file_id}")


@app.command()
def delete(
    file_id: str = typer.Argument(..., help="File id"),
    user: str = USER_OPTION,
):
    """
    Delete a stored file.
    """
    services = _services()
    with _errors():
        services.files.delete(file_id, _principal(user))

    console.print(f"Deleted {file_id}")


@app.command(name="list")
def list_files(
    user: str = USER_OPTION,
):
    """
    List your stored files.
    """
    services = _services()
    with _errors():
        files = services.files.list_files(user)

    if not files:
        console.print("No files stored.")
        return

    table = Table(title=f"Files ({len(files)})")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Size", justify="right")
    table.add_column("Uploaded")
    table.add_column("Expires")

    for f in files:
        table.add_row(
            f.id,
            f.original_name,
            _format_size(f.size),
            f.uploaded_at.strftime("%Y-%m-%d %H:%M"),
            f.expires_at.strftime("%Y-%m-%d %H:%M") if f.expires_at else "-",
        )

    console.print(table)


@app.command()
def sweep(
    watch: bool = typer.Option(
        False,
        "--watch", "-w",
        help="Keep running and sweep on the configured interval",
    ),
):
    """
    Delete expired files and self-destructing vault entries.
    """
    services = _services()

    if not watch:
        report = services.sweeper.run_once()
        console.print(f"Files expired: {report.files_expired}")
        console.print(f"Vault entries expired: {report.memberships_expired}")
        console.print(f"Orphaned vault entries removed: {report.orphans_removed}")
        if report.errors:
            for error in report.errors:
                console.print(f"  [yellow]{error}[/yellow]")
            raise typer.Exit(1)
        return

    console.print("Sweeping in the background. Press Ctrl+C to stop.")
    services.sweeper.start()
    try:
        services.sweeper.wait()
    except KeyboardInterrupt:
        pass
    finally:
        services.sweeper.stop()


@vault_app.command("add")
def vault_add(
    file_id: str = typer.Argument(..., help="File id to move into the vault"),
    user: str = USER_OPTION,
    role: str = ROLE_OPTION,
    department_bonus: int = BONUS_OPTION,
    pin: str = typer.Option(
        ...,
        "--pin",
        prompt="Vault PIN (6 digits)",
        hide_input=True,
        confirmation_prompt=True,
        help="6-digit PIN",
    ),
    self_destruct: bool = typer.Option(
        False,
        "--self-destruct",
        help="Destroy the file after --destruct-after",
    ),
    destruct_after: Optional[str] = typer.Option(
        None,
        "--destruct-after",
        help="ISO-8601 deadline for self-destruct",
    ),
):
    """
    Protect a file with a PIN.
    """
    from ..vault.models import parse_datetime

    services = _services()
    with _errors():
        try:
            deadline = parse_datetime(destruct_after)
        except ValueError:
            console.print(f"[red]Error: Invalid date: {destruct_after}[/red]")
            raise typer.Exit(1)

        membership = services.controller.promote(
            file_id,
            _principal(user, role, department_bonus),
            pin,
            self_destruct=self_destruct,
            destruct_after=deadline,
        )

    console.print(f"[green]File added to vault[/green]")
    console.print(f"  Vault ID: {membership.id}")
    if membership.destruct_after:
        console.print(f"  Self-destructs: {membership.destruct_after.isoformat()}")


@vault_app.command("access")
def vault_access(
    membership_id: str = typer.Argument(..., help="Vault id"),
    output: Path = typer.Argument(..., help="Where to write the decrypted file"),
    user: str = USER_OPTION,
    pin: str = typer.Option(
        ...,
        "--pin",
        prompt="Vault PIN",
        hide_input=True,
        help="6-digit PIN",
    ),
):
    """
    Unlock a vaulted file with its PIN and decrypt it.
    """
    from ..vault.crypto import write_atomic

    services = _services()
    caller = _principal(user)

    with _errors():
        capability = services.controller.gate(membership_id, caller, pin)
        chunks = services.controller.open_capability(capability.token, caller)

        def write(out) -> None:
            for chunk in chunks:
                out.write(chunk)

        write_atomic(output, write)

    console.print(f"[green]Decrypted vault file to {output}[/green]")


@vault_app.command("remove")
def vault_remove(
    membership_id: str = typer.Argument(..., help="Vault id"),
    user: str = USER_OPTION,
):
    """
    Take a file out of the vault (the file itself is kept).
    """
    services = _services()
    with _errors():
        removed = services.controller.remove(membership_id, _principal(user))

    if removed:
        console.print(f"Removed {membership_id} from vault")
    else:
        console.print(f"{membership_id} is not in the vault")


@vault_app.command("list")
def vault_list(
    user: str = USER_OPTION,
):
    """
    List your vaulted files.
    """
    services = _services()
    with _errors():
        memberships = services.controller.list_memberships(user)

    if not memberships:
        console.print("Vault is empty.")
        return

    table = Table(title=f"Vault ({len(memberships)})")
    table.add_column("Vault ID", style="cyan")
    table.add_column("File")
    table.add_column("Accesses", justify="right")
    table.add_column("Last access")
    table.add_column("Self-destruct")

    for m in memberships:
        stored = services.files.get(m.file_id)
        table.add_row(
            m.id,
            stored.original_name if stored else m.file_id,
            str(m.access_count),
            m.last_accessed_at.strftime("%Y-%m-%d %H:%M") if m.last_accessed_at else "-",
            m.destruct_after.strftime("%Y-%m-%d %H:%M") if m.self_destruct else "-",
        )

    console.print(table)


@vault_app.command("quota")
def vault_quota(
    user: str = USER_OPTION,
    role: str = ROLE_OPTION,
    department_bonus: int = BONUS_OPTION,
    team: Optional[str] = typer.Option(None, "--team", help="Also show this team's storage"),
):
    """
    Show your vault quota and usage.
    """
    services = _services()
    with _errors():
        status = services.controller.quota_status(_principal(user, role, department_bonus))
        team_status = services.ledger.team_status(team) if team else None

    console.print(f"Quota: {_format_size(status.quota)}")
    console.print(f"Used: {_format_size(status.usage)}")
    console.print(f"Remaining: {_format_size(status.remaining)}")
    if team_status is not None:
        console.print(
            f"Team {team}: {_format_size(team_status.usage)} used of "
            f"{_format_size(team_status.quota)}"
        )


@app.command()
def version():
    """Show version information."""
    from .. import __version__

    console.print(f"docvault v{__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
