"""
Click CLI for the Twitch bot.

Commands:
    run        Start the bot (acquires a token first)
    authorize  Run the browser authorization flow
    status     Show the stored credential
    revoke     Delete the stored credential
"""

import logging
import sys

import click

from twitchbot.oauth.coordinator import OAuthCoordinator
from twitchbot.oauth.exceptions import (
    AuthorizationTimeoutError,
    ConfigurationError,
    TwitchOAuthError,
)

logger = logging.getLogger(__name__)


def format_time_remaining(seconds) -> str:
    """
    Format seconds into human-readable time remaining.

    Args:
        seconds: Number of seconds (None if the token has no expiry)

    Returns:
        Formatted string (e.g., "2h 15m", "45m", "expired", "never")
    """
    if seconds is None:
        return "never"
    if seconds <= 0:
        return "expired"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)

    if hours > 0:
        return f"{hours}h {minutes}m"
    elif minutes > 0:
        return f"{minutes}m"
    else:
        return f"{int(seconds)}s"


def mask_secret(value: str) -> str:
    """Show only the last four characters of a secret."""
    if len(value) <= 4:
        return "****"
    return f"****{value[-4:]}"


def _coordinator() -> OAuthCoordinator:
    try:
        return OAuthCoordinator()
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool) -> None:
    """
    Twitch bot - OAuth token management.

    Configuration is read from TWITCH_CLIENT_ID, TWITCH_CLIENT_SECRET,
    HOSTNAME_URL and the optional TWITCH_* / DATABASE_URL variables.
    """
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


@cli.command()
@click.option("--open-browser", is_flag=True, help="Open the browser automatically")
def run(open_browser: bool) -> None:
    """Start the bot with a valid access token."""
    click.echo("Bot is starting")
    coordinator = _coordinator()

    click.echo("Starting credentials server")
    try:
        token = coordinator.get_token(open_browser=open_browser)
    except AuthorizationTimeoutError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(3)
    except TwitchOAuthError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Access token: {mask_secret(token.access_token)}")
    click.echo(f"Expires in:   {format_time_remaining(token.expires_in)}")
    click.echo(f"Scopes:       {' '.join(token.scopes)}")


@cli.command()
@click.option("--open-browser", is_flag=True, help="Open the browser automatically")
@click.option("--force", is_flag=True, help="Re-authorize even if a valid token is stored")
def authorize(open_browser: bool, force: bool) -> None:
    """
    Authorize the bot with Twitch.

    \b
    Examples:
      twitchbot authorize                  # Only if no valid token is stored
      twitchbot authorize --force          # Always run the browser flow
    """
    coordinator = _coordinator()

    try:
        if force:
            token = coordinator.run_authorization_flow(open_browser=open_browser)
        else:
            token = coordinator.get_token(open_browser=open_browser)
    except TwitchOAuthError as e:
        click.echo(f"Error: authorization failed: {e}", err=True)
        sys.exit(1)

    if coordinator.token_manager.last_storage_error is not None:
        click.echo("! Token obtained but could not be saved", err=True)

    click.echo(f"Authorized. Token expires in {format_time_remaining(token.expires_in)}")


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the stored authorization status."""
    verbose = ctx.obj.get("verbose", False)
    coordinator = _coordinator()

    try:
        info = coordinator.get_status()
    except TwitchOAuthError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    if not info["authorized"]:
        click.echo("NOT AUTHORIZED")
        click.echo(f"Reason: {info.get('message', 'Unknown')}")
        click.echo("Run: twitchbot authorize")
        sys.exit(1)

    if info["expired"]:
        click.echo("AUTHORIZED (token expired)")
        if info["refreshable"]:
            click.echo("The token will be refreshed on next use.")
    else:
        click.echo("AUTHORIZED")
        click.echo(f"Expires in:  {format_time_remaining(info['expires_in_seconds'])}")

    if verbose:
        click.echo(f"Expires at:  {info['expires_at'] or 'N/A'}")
        click.echo(f"Scopes:      {' '.join(info['scopes']) or 'N/A'}")
        click.echo(f"Storage:     {info['storage']}")

    if info["expired"] and not info["refreshable"]:
        sys.exit(1)


@cli.command()
def revoke() -> None:
    """Delete the locally stored token."""
    coordinator = _coordinator()

    try:
        removed = coordinator.revoke()
    except TwitchOAuthError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    if removed:
        click.echo("Stored token deleted. Run 'twitchbot authorize' to authorize again.")
    else:
        click.echo("No stored token found.")


if __name__ == "__main__":
    cli()
