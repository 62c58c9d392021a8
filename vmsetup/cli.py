"""CLI interface for the provisioning tool."""
from pathlib import Path
from typing import Optional

import sh
import typer

from . import config
from . import prompts
from . import steps
from . import utils
from .privileges import Privileges


def setup(
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview changes without applying them"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
    ssh_hardening: bool = typer.Option(
        True, "--ssh-hardening/--no-ssh-hardening", envvar="VMSETUP_SSH_HARDENING",
        help="Provision key-only SSH access for the service account",
    ),
    service_user: str = typer.Option(
        config.DEFAULT_SERVICE_USER, "--service-user", envvar="VMSETUP_SERVICE_USER",
        help="Account that receives SSH key access and sudo",
    ),
    monitoring_server: str = typer.Option(
        config.DEFAULT_MONITORING_SERVER, "--monitoring-server", envvar="VMSETUP_MONITORING_SERVER",
        help="Zabbix server for passive and active checks",
    ),
    timezone: str = typer.Option(config.DEFAULT_TIMEZONE, "--timezone", envvar="VMSETUP_TIMEZONE"),
    confirm_token: str = typer.Option(
        config.DEFAULT_CONFIRM_TOKEN, "--confirm-token", envvar="VMSETUP_CONFIRM_TOKEN",
        help="Exact answer that confirms SSH access and reboots",
    ),
    pace: float = typer.Option(1.0, "--pace", envvar="VMSETUP_PACE", help="Seconds to pause after each log line"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", envvar="VMSETUP_LOG_FILE"),
):
    """Provision a fresh Debian/Ubuntu virtual machine."""
    utils.setup_logging(verbose, pace=pace, log_file=log_file)

    privileges = Privileges.from_process()
    if not privileges.is_root:
        utils.log_error("This tool must be run as root!")
        raise typer.Exit(1)

    context = config.HostContext.capture(
        service_user=service_user,
        monitoring_server=monitoring_server,
        timezone=timezone,
        confirm_token=confirm_token,
        ssh_hardening=ssh_hardening,
    )

    try:
        steps.provision_system(context, privileges, prompts.ConsolePrompt(), dry_run=dry_run)
    except sh.CommandNotFound as e:
        utils.log_error(f"Command not found: {e}")
        raise typer.Exit(1)
    except (utils.ProvisioningError, sh.ErrorReturnCode, OSError) as e:
        utils.log_error(str(e))
        raise typer.Exit(1)
    typer.echo("✅ Provisioning complete!")


app = typer.Typer(
    name="vmsetup",
    help="Provisioning tool for fresh Debian/Ubuntu virtual machines.",
    add_completion=False,
    invoke_without_command=True,
    callback=setup,
)


if __name__ == "__main__":
    app()
