"""Debian/Ubuntu-specific provisioning functions."""
import time

import sh
import typer

from vmsetup.config import HostContext, load_template
from vmsetup.prompts import ConfirmationProvider
from vmsetup.utils import (
    ProvisioningError, append_once, apt_env, highlight, log_action, log_info, log_warning, run,
)

ESSENTIAL_PACKAGES = (
    "traceroute",
    "mlocate",
    "wget",
    "curl",
    "neovim",
    "net-tools",
    "htop",
    "tmux",
    "git",
    "unzip",
    "gnupg",
    "ca-certificates",
    "software-properties-common",
)

NVIM_PATH = "/usr/bin/nvim"
REBOOT_DELAY = 10


def update_packages(dry_run: bool = False) -> None:
    """Refresh the package index and upgrade everything installed."""
    if dry_run:
        log_action("[DRY RUN] Would update the package index and upgrade packages")
        return

    log_info("Updating package index...")
    try:
        run("apt-get", "update", "-y", _env=apt_env())
    except sh.ErrorReturnCode as e:
        raise ProvisioningError("Failed to update the package index") from e

    log_info("Upgrading installed packages (this may take a while)...")
    try:
        run("apt-get", "upgrade", "-y", _env=apt_env())
    except sh.ErrorReturnCode as e:
        raise ProvisioningError("Failed to upgrade installed packages") from e


def install_packages(packages, dry_run: bool = False) -> None:
    """Install a package set; any failure is fatal."""
    packages = list(packages)
    if dry_run:
        log_action(f"[DRY RUN] Would install {' '.join(packages)}")
        return

    log_action(f"Installing {len(packages)} packages...")
    try:
        run("apt-get", "install", "-y", *packages, _env=apt_env())
    except sh.ErrorReturnCode as e:
        raise ProvisioningError(f"Failed to install packages: {' '.join(packages)}") from e


def set_timezone(context: HostContext, dry_run: bool = False) -> str:
    """Set the system timezone and return the one timedatectl reports back."""
    if dry_run:
        log_action(f"[DRY RUN] Would set timezone to {context.timezone}")
        return context.timezone

    log_info(f"Setting timezone to {context.timezone}...")
    run("timedatectl", "set-timezone", context.timezone)
    active = str(run("timedatectl", "show", "--property=Timezone", "--value")).strip()
    log_info(f"Timezone configured: {active}")
    return active


def set_time_locale(context: HostContext, dry_run: bool = False) -> None:
    """Use a 24h clock by pointing LC_TIME at the configured locale."""
    if dry_run:
        log_action(f"[DRY RUN] Would set LC_TIME={context.time_locale}")
        return

    log_info("Configuring 24h time format...")
    run("localectl", "set-locale", f"LC_TIME={context.time_locale}")


def configure_neovim(context: HostContext, dry_run: bool = False) -> None:
    """Write the super-user's Neovim config and make nvim the default editor."""
    if dry_run:
        log_action(f"[DRY RUN] Would write {context.nvim_config_dir / 'init.vim'} and set nvim as editor")
        return

    log_info("Configuring Neovim as the default editor...")
    context.nvim_config_dir.mkdir(parents=True, exist_ok=True)
    (context.nvim_config_dir / "init.vim").write_text(load_template("init.vim"))

    try:
        run("update-alternatives", "--set", "editor", NVIM_PATH)
    except sh.ErrorReturnCode:
        run("update-alternatives", "--install", "/usr/bin/editor", "editor", NVIM_PATH, "100")

    if append_once(context.bashrc, "alias vim='nvim'", load_template("editor_aliases.bashrc")):
        log_action(f"Added editor aliases to {context.bashrc}")


def configure_bash_prompt(context: HostContext, dry_run: bool = False) -> None:
    """Append the prompt, alias and history block to the super-user's .bashrc once."""
    if dry_run:
        log_action(f"[DRY RUN] Would customize {context.bashrc}")
        return

    if append_once(context.bashrc, "# vmsetup prompt", load_template("prompt.bashrc")):
        log_info("Bash prompt customized")
    else:
        log_info("Bash prompt already customized.")


def ssh_test_command(context: HostContext) -> str:
    return f"ssh -i {context.hostname}.key {context.service_user}@{context.ip_address}"


def offer_reboot(context: HostContext, prompt: ConfirmationProvider, dry_run: bool = False) -> bool:
    """Ask whether to reboot now. Only the exact confirmation token reboots."""
    log_warning("A reboot is recommended to apply every change")
    answer = prompt.ask(f"Reboot now? (type '{context.confirm_token}' to reboot):")

    if answer != context.confirm_token:
        log_warning("Remember to reboot the server manually!")
        log_info("To reboot: sudo reboot")
        if context.ssh_hardening:
            log_info("To test SSH before rebooting:")
            typer.echo(highlight(ssh_test_command(context)))
        return False

    if dry_run:
        log_action("[DRY RUN] Would reboot the server")
        return True

    log_info(f"Rebooting in {REBOOT_DELAY} seconds...")
    if context.ssh_hardening:
        log_warning("MAKE SURE YOU HAVE DOWNLOADED THE SSH KEY!")
    time.sleep(REBOOT_DELAY)
    run("reboot")
    return True
