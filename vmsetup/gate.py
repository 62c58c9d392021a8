"""Operator checkpoint between granting key access and revoking root/password login."""
import typer

from vmsetup.config import HostContext
from vmsetup.debian import ssh_test_command
from vmsetup.prompts import ConfirmationProvider
from vmsetup.utils import highlight, log_action, log_heading, log_info, log_warning


def show_key_retrieval(context: HostContext) -> None:
    """Tell the operator where the private key is and how to copy it out."""
    key_name = context.hostname
    log_heading("DOWNLOAD THE SSH KEY")
    log_warning("IMPORTANT: you MUST download the private key NOW!")
    typer.echo()
    typer.echo(f"{typer.style('Key location:', fg=typer.colors.YELLOW)} {context.key_path}")
    typer.echo()
    typer.secho("Using scp, run on your computer:", fg=typer.colors.GREEN)
    typer.echo(highlight(f"scp root@{context.ip_address}:{context.key_path} ~/Downloads/{key_name}.key"))
    typer.secho("After downloading, restrict its permissions:", fg=typer.colors.RED)
    typer.echo(highlight(f"chmod 600 {key_name}.key"))
    typer.echo()


def show_access_test(context: HostContext) -> None:
    """Tell the operator how to prove the new account can log in and elevate."""
    log_heading("TEST THE NEW ACCESS", color=typer.colors.YELLOW)
    typer.echo("From a SEPARATE terminal, keeping this session open:")
    typer.echo(f"1. {highlight(ssh_test_command(context))}")
    typer.echo(f"2. {highlight('sudo whoami')}  (must print root without asking for a password)")
    typer.echo()


def run_verification_gate(context: HostContext, prompt: ConfirmationProvider, dry_run: bool = False) -> None:
    """Block until the operator types the exact confirmation token.

    There is no timeout and no way around it: root and password login are
    only disabled after this returns.
    """
    if dry_run:
        log_action("[DRY RUN] Would wait for the operator to confirm key access")
        return

    show_key_retrieval(context)
    prompt.pause("Press ENTER after downloading the private key to continue...")
    log_info("Continuing configuration...")

    show_access_test(context)
    question = (
        f"Did you log in as '{context.service_user}' and run sudo successfully? "
        f"(type '{context.confirm_token}' to continue):"
    )
    while prompt.ask(question) != context.confirm_token:
        log_warning(f"Access not confirmed. Type exactly '{context.confirm_token}' once the test succeeds.")
        log_warning("Root and password login stay enabled until then. Do NOT close this session.")
        show_access_test(context)

    log_info("Access confirmed by the operator")
