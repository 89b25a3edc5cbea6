"""Command-line interface for HomeServe operations."""

from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from homeserve.auth.identity import create_identity_token
from homeserve.auth.models import UserAccount
from homeserve.logging_config import configure_logging, get_logger
from homeserve.referral.completion import ReferralCompletionService
from homeserve.referral.config import ReferralSettingsUpdate
from homeserve.referral.exceptions import ReferralNotFoundError, StoreUnavailableError, TransactionConflictError
from homeserve.referral.models import ReferralStatus
from homeserve.referral.service import ReferralService
from homeserve.storage.db import db

configure_logging()
logger = get_logger(__name__)

app = typer.Typer(
    name="homeserve",
    help="HomeServe - accounts, wallet and referral program administration",
    no_args_is_help=True,
)

console = Console()


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("settings-show")
def show_settings() -> None:
    """Show the referral program settings."""
    referral_settings = ReferralService(db).get_settings()

    table = Table(title="Referral settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", justify="right")
    for key, value in referral_settings.model_dump().items():
        table.add_row(key, "-" if value is None else str(value))

    console.print(table)


@app.command("settings-set")
def set_settings(
    enabled: Annotated[bool | None, typer.Option("--enabled/--disabled", help="Turn the program on or off")] = None,
    referrer_bonus: Annotated[float | None, typer.Option("--referrer-bonus", help="Bonus for the referrer")] = None,
    referred_bonus: Annotated[float | None, typer.Option("--referred-bonus", help="Bonus for the new user")] = None,
    code_length: Annotated[int | None, typer.Option("--code-length", help="Length of new referral codes")] = None,
    min_booking: Annotated[float | None, typer.Option("--min-booking", help="Minimum qualifying booking value")] = None,
    max_earnings: Annotated[float | None, typer.Option("--max-earnings", help="Cap on a referrer's total bonuses")] = None,
) -> None:
    """Change referral program settings; omitted options stay as they are."""
    changes = {
        "is_referral_system_enabled": enabled,
        "referrer_bonus": referrer_bonus,
        "referred_user_bonus": referred_bonus,
        "referral_code_length": code_length,
        "min_booking_value_for_bonus": min_booking,
        "max_earnings_per_referrer": max_earnings,
    }
    changes = {key: value for key, value in changes.items() if value is not None}
    if not changes:
        console.print("[yellow]Nothing to change[/yellow]")
        raise typer.Exit(1)

    try:
        update = ReferralSettingsUpdate(**changes)
    except ValueError as e:
        console.print(f"[bold red]✗[/bold red] Invalid settings: {escape(str(e))}")
        raise typer.Exit(1)

    ReferralService(db).update_settings(update)
    console.print("[bold green]✓[/bold green] Referral settings updated")
    show_settings()


@app.command("referrals-list")
def list_referrals(
    status: Annotated[ReferralStatus | None, typer.Option("--status", "-s", help="Filter by status")] = None,
    referrer_id: Annotated[str | None, typer.Option("--referrer", "-r", help="Filter by referrer user id")] = None,
    limit: Annotated[int, typer.Option("--limit", "-l", help="Max rows")] = 50,
) -> None:
    """List referral signups, newest first."""
    referrals = ReferralService(db).list_referrals(status=status, referrer_id=referrer_id, limit=limit)

    if not referrals:
        console.print("[yellow]No referrals found[/yellow]")
        return

    table = Table(title="Referrals")
    table.add_column("ID", style="cyan")
    table.add_column("Referrer")
    table.add_column("Referred", style="green")
    table.add_column("Status")
    table.add_column("Bonuses", justify="right")
    table.add_column("Created At")

    for referral in referrals:
        table.add_row(
            referral["id"],
            referral["referrer_id"],
            referral["referred_user_name"] or referral["referred_user_id"],
            referral["status"],
            f"{referral['referrer_bonus']:g} / {referral['referred_bonus']:g}",
            referral["created_at"].strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command("referral-complete")
def complete_referral(
    referral_id: Annotated[str, typer.Argument(help="Referral ID")],
    booking_id: Annotated[str | None, typer.Option("--booking", "-b", help="Qualifying booking ID")] = None,
    amount: Annotated[float | None, typer.Option("--amount", "-a", help="Booking total")] = None,
) -> None:
    """Complete a pending referral and credit the referrer."""
    try:
        referral = ReferralCompletionService(db).mark_referral_completed(referral_id, booking_id, amount)
    except ReferralNotFoundError:
        console.print(f"[red]Referral {referral_id} not found[/red]")
        raise typer.Exit(1)
    except (TransactionConflictError, StoreUnavailableError) as e:
        console.print(f"[bold red]✗[/bold red] Completion failed: {escape(str(e))}")
        raise typer.Exit(1)

    console.print(f"[bold]Referral:[/bold] {referral.id}")
    console.print(f"[bold]Status:[/bold] {referral.status.value}")
    if referral.failure_reason:
        console.print(f"[bold]Reason:[/bold] {referral.failure_reason}")


@app.command("user-admin")
def grant_admin(
    user_id: Annotated[str, typer.Argument(help="User ID")],
    revoke: Annotated[bool, typer.Option("--revoke", help="Remove admin rights instead")] = False,
) -> None:
    """Grant or revoke admin rights."""
    with db.session() as session:
        user = session.get(UserAccount, user_id)
        if not user:
            console.print(f"[red]User {user_id} not found[/red]")
            raise typer.Exit(1)
        user.is_admin = not revoke

    logger.info("admin_rights_changed", user_id=user_id, is_admin=not revoke)
    console.print(f"[bold green]✓[/bold green] {user_id} is_admin={not revoke}")


@app.command("identity-token")
def issue_identity_token(
    uid: Annotated[str, typer.Argument(help="Account id (sub claim)")],
    email: Annotated[str | None, typer.Option("--email", help="Email claim")] = None,
    name: Annotated[str | None, typer.Option("--name", help="Name claim")] = None,
) -> None:
    """Sign a development identity token for calling the API."""
    claims = {key: value for key, value in {"email": email, "name": name}.items() if value}
    typer.echo(create_identity_token(uid, **claims))


if __name__ == "__main__":
    app()
