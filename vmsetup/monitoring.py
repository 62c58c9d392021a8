"""Zabbix agent installation and firewall setup."""
from pathlib import Path
from typing import Optional

import sh

from vmsetup.config import MONITORING_PORT, HostContext
from vmsetup.utils import apt_env, command_exists, edit_file, log_action, log_info, log_warning, run

PREFERRED_AGENT = "zabbix-agent2"
FALLBACK_AGENT = "zabbix-agent"

AGENT_CONFIG_FILES = {
    PREFERRED_AGENT: "zabbix_agent2.conf",
    FALLBACK_AGENT: "zabbix_agentd.conf",
}


def install_agent(dry_run: bool = False) -> str:
    """Install the Zabbix agent, falling back to the classic agent package.

    Returns the name of the package (and systemd unit) that was installed.
    """
    if dry_run:
        log_action(f"[DRY RUN] Would install {PREFERRED_AGENT}")
        return PREFERRED_AGENT

    log_info("Installing Zabbix agent...")
    try:
        run("apt-get", "install", "-y", PREFERRED_AGENT, _env=apt_env())
        return PREFERRED_AGENT
    except sh.ErrorReturnCode:
        log_warning(f"Failed to install {PREFERRED_AGENT}, trying {FALLBACK_AGENT}...")

    run("apt-get", "install", "-y", FALLBACK_AGENT, _env=apt_env())
    return FALLBACK_AGENT


def agent_config_path(context: HostContext) -> Path:
    """The agent2 config when it is present, otherwise the classic agentd one."""
    preferred = context.zabbix_config_dir / AGENT_CONFIG_FILES[PREFERRED_AGENT]
    if preferred.exists():
        return preferred
    return context.zabbix_config_dir / AGENT_CONFIG_FILES[FALLBACK_AGENT]


def configure_agent(context: HostContext, dry_run: bool = False) -> Path:
    """Point the agent at the monitoring server and name it after this host."""
    config_path = agent_config_path(context)
    if dry_run:
        log_action(f"[DRY RUN] Would configure {config_path} for {context.monitoring_server}")
        return config_path

    log_info("Configuring Zabbix agent...")
    settings = (
        ("Server", context.monitoring_server),
        ("ServerActive", context.monitoring_server),
        ("Hostname", context.hostname),
    )
    for key, value in settings:
        edit_file(config_path, key, value, separator="=", commented=False)
    return config_path


def open_firewall_port(port: int = MONITORING_PORT, dry_run: bool = False) -> Optional[str]:
    """Allow inbound TCP on ``port`` through firewalld or ufw.

    Returns the front end that was used, or None when neither is installed.
    """
    rule = f"{port}/tcp"

    if command_exists('firewall-cmd'):
        if dry_run:
            log_action(f"[DRY RUN] Would open {rule} with firewalld")
            return 'firewalld'
        log_info("Configuring firewalld for Zabbix...")
        run("firewall-cmd", f"--add-port={rule}", "--permanent")
        run("firewall-cmd", "--reload")
        if str(port) in str(run("firewall-cmd", "--list-all")):
            log_info("Firewall rule created")
        else:
            log_warning("Firewall rule may not have been created correctly")
        return 'firewalld'

    if command_exists('ufw'):
        if dry_run:
            log_action(f"[DRY RUN] Would open {rule} with ufw")
            return 'ufw'
        log_info("Configuring UFW for Zabbix...")
        run("ufw", "allow", rule)
        log_info("UFW rule created")
        return 'ufw'

    log_warning("No firewall detected (firewalld/ufw)")
    return None


def start_agent(service: str, dry_run: bool = False) -> None:
    """Restart the agent so it reads its config, and enable it at boot."""
    if dry_run:
        log_action(f"[DRY RUN] Would restart and enable {service}")
        return

    run("systemctl", "restart", service)
    run("systemctl", "enable", service)
    log_info("Zabbix agent configured and started")
