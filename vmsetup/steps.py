"""Provisioning workflow steps."""
import platform

import typer

from vmsetup import debian, gate, monitoring, ssh
from vmsetup.config import HostContext
from vmsetup.privileges import Capability, Privileges
from vmsetup.prompts import ConfirmationProvider
from vmsetup.utils import highlight, log_info


def update_system(context: HostContext, privileges: Privileges, dry_run: bool = False) -> str:
    """Update packages and set the clock. Returns the active timezone."""
    privileges.require("System update", Capability.PACKAGES, Capability.FILESYSTEM)
    log_info("=== Starting configuration of the new virtual machine ===")

    debian.update_packages(dry_run=dry_run)
    timezone = debian.set_timezone(context, dry_run=dry_run)
    debian.set_time_locale(context, dry_run=dry_run)
    return timezone


def install_dependencies(context: HostContext, privileges: Privileges, dry_run: bool = False) -> None:
    privileges.require("Package installation", Capability.PACKAGES)
    log_info("Installing essential packages...")
    debian.install_packages(debian.ESSENTIAL_PACKAGES, dry_run=dry_run)
    log_info("Essential packages installed")


def configure_environment(context: HostContext, privileges: Privileges, dry_run: bool = False) -> None:
    """Editor and shell customization for the super-user."""
    privileges.require("Shell environment", Capability.FILESYSTEM)
    debian.configure_neovim(context, dry_run=dry_run)
    debian.configure_bash_prompt(context, dry_run=dry_run)


def setup_monitoring(context: HostContext, privileges: Privileges, dry_run: bool = False) -> None:
    privileges.require("Monitoring", Capability.PACKAGES, Capability.FILESYSTEM, Capability.SERVICES)
    log_info("Installing and configuring Zabbix agent...")

    service = monitoring.install_agent(dry_run=dry_run)
    monitoring.configure_agent(context, dry_run=dry_run)
    monitoring.open_firewall_port(dry_run=dry_run)
    monitoring.start_agent(service, dry_run=dry_run)


def harden_ssh(context: HostContext, privileges: Privileges, prompt: ConfirmationProvider,
               dry_run: bool = False) -> None:
    """Key access for the service account, then key-only login.

    Hardening is only committed after the operator passed the verification
    gate; any earlier failure leaves root and password login enabled.
    """
    privileges.require("SSH hardening", Capability.FILESYSTEM, Capability.SERVICES, Capability.ACCOUNTS)
    log_info("=== Configuring SSH key authentication ===")

    ssh.enable_bootstrap_access(context, dry_run=dry_run)
    ssh.generate_key_pair(context, dry_run=dry_run)
    ssh.provision_service_account(context, dry_run=dry_run)
    gate.run_verification_gate(context, prompt, dry_run=dry_run)
    ssh.commit_hardening(context, dry_run=dry_run)


def print_summary(context: HostContext, timezone: str) -> None:
    rows = [
        ("Hostname", context.hostname),
        ("IP", context.ip_address),
        ("Timezone", timezone),
    ]
    if context.ssh_hardening:
        rows.append(("SSH user", context.service_user))
    rows.append(("Editor", "Neovim (nvim)"))
    rows.append(("Zabbix server", context.monitoring_server))
    if context.ssh_hardening:
        rows.append(("SSH key", str(context.key_path)))

    rule = typer.style("=" * 40, fg=typer.colors.GREEN)
    typer.echo()
    typer.echo(rule)
    typer.secho("CONFIGURATION COMPLETE!", fg=typer.colors.GREEN, bold=True)
    typer.echo(rule)
    for label, value in rows:
        typer.echo(f"{label}: {highlight(value)}")
    typer.echo(rule)
    typer.echo()

    if context.ssh_hardening:
        typer.secho("Next steps:", fg=typer.colors.YELLOW)
        typer.echo(f"1. {highlight('Test the SSH connection from another terminal BEFORE rebooting')}")
        typer.echo(f"2. {highlight('Keep this session open until access is confirmed')}")
        typer.echo(f"3. {highlight('Reboot the server to apply every change')}")
        typer.echo()


def provision_system(context: HostContext, privileges: Privileges, prompt: ConfirmationProvider,
                     dry_run: bool = False) -> None:
    """Main provisioning workflow."""
    current_platform = platform.system()

    if current_platform != 'Linux':
        raise NotImplementedError(f"Platform {current_platform} is not supported")

    # Phase 1: Packages and clock
    timezone = update_system(context, privileges, dry_run=dry_run)
    install_dependencies(context, privileges, dry_run=dry_run)

    # Phase 2: Editor and shell
    configure_environment(context, privileges, dry_run=dry_run)

    # Phase 3: Monitoring agent
    setup_monitoring(context, privileges, dry_run=dry_run)

    # Phase 4: SSH access
    if context.ssh_hardening:
        harden_ssh(context, privileges, prompt, dry_run=dry_run)

    # Phase 5: Wrap-up
    print_summary(context, timezone)
    debian.offer_reboot(context, prompt, dry_run=dry_run)
