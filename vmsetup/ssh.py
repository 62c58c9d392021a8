"""SSH access provisioning and hardening.

The functions here move the authentication daemon from a permissive setup
(root and password login allowed) to a key-only one. The caller is
responsible for running the verification gate between
``provision_service_account`` and ``commit_hardening``.
"""
import os
import shutil
import time
from pathlib import Path
from typing import Optional

import sh

from vmsetup.config import HostContext, load_template
from vmsetup.utils import ProvisioningError, edit_file, log_action, log_error, log_info, log_warning, run

SSH_DIR_MODE = 0o700
AUTHORIZED_KEYS_MODE = 0o600
SUDOERS_MODE = 0o440
FRAGMENT_MODE = 0o644
PUBLIC_KEY_MODE = 0o644

# Effective values, as printed by ``sshd -T``, for each access mode
BOOTSTRAP_SETTINGS = {"permitrootlogin": "yes", "passwordauthentication": "yes"}
HARDENED_SETTINGS = {"permitrootlogin": "no", "passwordauthentication": "no"}


def restart_sshd(context: HostContext) -> None:
    run("systemctl", "restart", context.sshd_service)


def enable_bootstrap_access(context: HostContext, dry_run: bool = False) -> None:
    """Allow root and password login so the operator can fetch the new key."""
    if dry_run:
        log_action(f"[DRY RUN] Would enable root and password login in {context.sshd_config}")
        return

    log_info("Enabling root and password login until key access is verified...")
    edit_file(context.sshd_config, "PermitRootLogin", "yes")
    edit_file(context.sshd_config, "PasswordAuthentication", "yes")
    if context.hardening_fragment.exists():
        log_warning(f"{context.hardening_fragment} exists and takes precedence over {context.sshd_config}")

    try:
        overrides = overridden_settings(context, BOOTSTRAP_SETTINGS)
    except ProvisioningError as e:
        log_warning(f"{e}; root and password login may still be refused")
    else:
        for key, value in overrides.items():
            log_warning(f"Effective {key} is '{value}'; another file in {context.sshd_config.parent} overrides it")
    restart_sshd(context)


def generate_key_pair(context: HostContext, dry_run: bool = False) -> bool:
    """Create the host's ED25519 key pair unless one is already there.

    Returns True when a new pair was written. An existing key is never
    replaced, since the operator may already have downloaded it.
    """
    key_path = context.key_path
    if key_path.exists():
        log_warning(f"SSH key already exists at {key_path}")
        if not context.public_key_path.exists():
            restore_public_key(context, dry_run=dry_run)
        return False

    if dry_run:
        log_action(f"[DRY RUN] Would generate an ED25519 key pair at {key_path}")
        return False

    log_info("Generating ED25519 SSH key pair...")
    key_path.parent.mkdir(mode=SSH_DIR_MODE, parents=True, exist_ok=True)
    try:
        run("ssh-keygen", "-t", "ed25519", "-a", "100",
            "-f", str(key_path), "-C", context.key_comment, "-N", "")
    except sh.ErrorReturnCode as e:
        raise ProvisioningError(f"Failed to generate SSH key at {key_path}") from e

    log_info(f"SSH key pair created: {key_path}")
    return True


def restore_public_key(context: HostContext, dry_run: bool = False) -> None:
    """Derive a missing public key from the existing private key."""
    public_key_path = context.public_key_path
    if dry_run:
        log_action(f"[DRY RUN] Would derive {public_key_path} from {context.key_path}")
        return

    log_warning(f"{public_key_path} is missing, deriving it from the private key")
    try:
        public_key = str(run("ssh-keygen", "-y", "-f", str(context.key_path)))
    except sh.ErrorReturnCode as e:
        raise ProvisioningError(f"Failed to derive the public key from {context.key_path}") from e

    if not public_key.endswith("\n"):
        public_key += "\n"
    public_key_path.write_text(public_key)
    os.chmod(public_key_path, PUBLIC_KEY_MODE)


def account_exists(user: str) -> bool:
    try:
        run("id", user)
    except sh.ErrorReturnCode:
        return False
    return True


def chown_to(user: str, *paths: Path) -> None:
    run("chown", "-R", f"{user}:{user}", *[str(p) for p in paths])


def create_service_account(context: HostContext, dry_run: bool = False) -> bool:
    """Create the service account with a home directory and bash, if missing."""
    user = context.service_user
    if account_exists(user):
        log_warning(f"User '{user}' already exists")
        return False

    if dry_run:
        log_action(f"[DRY RUN] Would create user '{user}'")
        return False

    run("useradd", "-m", "-d", str(context.service_home), "-s", "/bin/bash", user)
    log_info(f"User '{user}' created")
    return True


def install_authorized_key(context: HostContext, dry_run: bool = False) -> Path:
    """Append the host public key to the service account's authorized_keys.

    The key is appended even when already present. Directory and file modes
    are set explicitly so the host umask cannot loosen them.
    """
    authorized_keys = context.authorized_keys_path
    if dry_run:
        log_action(f"[DRY RUN] Would append {context.public_key_path} to {authorized_keys}")
        return authorized_keys

    ssh_dir = authorized_keys.parent
    ssh_dir.mkdir(parents=True, exist_ok=True)
    authorized_keys.touch(exist_ok=True)
    os.chmod(ssh_dir, SSH_DIR_MODE)
    os.chmod(authorized_keys, AUTHORIZED_KEYS_MODE)

    public_key = context.public_key_path.read_text()
    if not public_key.endswith("\n"):
        public_key += "\n"
    with open(authorized_keys, "a") as f:
        f.write(public_key)

    chown_to(context.service_user, ssh_dir)
    log_info("Public key added to authorized_keys")
    return authorized_keys


def grant_passwordless_sudo(context: HostContext, dry_run: bool = False) -> bool:
    sudoers_path = context.sudoers_path
    if sudoers_path.exists():
        log_info(f"sudo permissions for '{context.service_user}' already present.")
        return False

    if dry_run:
        log_action(f"[DRY RUN] Would write {sudoers_path}")
        return False

    sudoers_path.write_text(f"{context.service_user} ALL=(ALL) NOPASSWD:ALL\n")
    os.chmod(sudoers_path, SUDOERS_MODE)
    log_info(f"sudo permissions configured for '{context.service_user}'")
    return True


def copy_shell_profile(context: HostContext, dry_run: bool = False) -> None:
    """Give the service account the super-user's .bashrc and Neovim config."""
    home = context.service_home
    if dry_run:
        log_action(f"[DRY RUN] Would copy .bashrc and nvim config to {home}")
        return

    copied = []
    if context.bashrc.exists():
        shutil.copy2(context.bashrc, home / ".bashrc")
        copied.append(home / ".bashrc")

    config_dir = home / ".config"
    config_dir.mkdir(parents=True, exist_ok=True)
    copied.append(config_dir)
    if context.nvim_config_dir.is_dir():
        shutil.copytree(context.nvim_config_dir, config_dir / "nvim", dirs_exist_ok=True)

    chown_to(context.service_user, *copied)
    log_info(f"bash and nvim settings copied to '{context.service_user}'")


def provision_service_account(context: HostContext, dry_run: bool = False) -> None:
    log_info(f"Configuring user '{context.service_user}' for SSH access...")
    create_service_account(context, dry_run=dry_run)
    install_authorized_key(context, dry_run=dry_run)
    grant_passwordless_sudo(context, dry_run=dry_run)
    copy_shell_profile(context, dry_run=dry_run)


def backup_sshd_config(context: HostContext) -> Path:
    backup_path = context.backup_path
    shutil.copy2(context.sshd_config, backup_path)
    log_info(f"SSH configuration backed up to {backup_path}")
    return backup_path


def write_hardening_fragment(context: HostContext, content: Optional[str] = None) -> Path:
    fragment = context.hardening_fragment
    fragment.parent.mkdir(parents=True, exist_ok=True)
    fragment.write_text(content if content is not None else load_template("99-hardening.conf"))
    os.chmod(fragment, FRAGMENT_MODE)
    return fragment


def validate_sshd_config(context: HostContext) -> bool:
    """Run the daemon's own checker against the merged configuration."""
    try:
        run("sshd", "-t", "-f", str(context.sshd_config))
    except sh.CommandNotFound:
        log_error("sshd was not found on PATH; the configuration cannot be checked")
        return False
    except sh.ErrorReturnCode as e:
        detail = e.stderr.decode(errors="replace").strip() if e.stderr else ""
        if detail:
            log_error(detail)
        return False
    return True


def effective_sshd_settings(context: HostContext) -> dict:
    """The merged configuration as sshd reports it with ``-T``.

    Keys are lower-cased. sshd keeps the first value it reads for a
    directive, so drop-ins sorting before ours can override it.
    """
    try:
        output = run("sshd", "-T", "-f", str(context.sshd_config))
    except (sh.CommandNotFound, sh.ErrorReturnCode) as e:
        raise ProvisioningError("Could not read the effective SSH configuration") from e

    settings = {}
    for line in str(output).splitlines():
        key, _, value = line.strip().partition(" ")
        if key:
            settings.setdefault(key.lower(), value.strip())
    return settings


def overridden_settings(context: HostContext, expected: dict) -> dict:
    """Directives from ``expected`` whose effective value differs, with that value."""
    effective = effective_sshd_settings(context)
    return {key: effective.get(key) for key, value in expected.items() if effective.get(key) != value}


def wait_for_sshd(context: HostContext) -> None:
    """Poll systemd until the daemon reports active, a bounded number of times."""
    attempts = context.liveness_attempts
    for attempt in range(1, attempts + 1):
        try:
            run("systemctl", "is-active", "--quiet", context.sshd_service)
        except sh.ErrorReturnCode:
            log_warning(f"{context.sshd_service} is not active yet ({attempt}/{attempts})")
            if attempt < attempts:
                time.sleep(context.liveness_interval)
            continue
        log_info(f"{context.sshd_service} is running with the new configuration")
        return
    raise ProvisioningError(
        f"{context.sshd_service} is not running after restart; check it from the console "
        f"(backup at {context.backup_path})"
    )


def commit_hardening(context: HostContext, fragment: Optional[str] = None, dry_run: bool = False) -> None:
    """Switch the daemon to key-only access.

    The fragment is validated, and the effective configuration checked,
    before anything else changes. If either step fails, or anything raises
    in between, the fragment is removed and the host stays permissive.
    """
    if dry_run:
        log_action(f"[DRY RUN] Would back up {context.sshd_config} and write {context.hardening_fragment}")
        return

    backup_sshd_config(context)

    log_info("Restricting the SSH server to key authentication...")
    accepted = False
    try:
        write_hardening_fragment(context, fragment)

        log_info("Validating SSH configuration...")
        if not validate_sshd_config(context):
            raise ProvisioningError("Invalid SSH configuration! Hardening fragment removed")

        overrides = overridden_settings(context, HARDENED_SETTINGS)
        for key, value in overrides.items():
            log_error(f"Effective {key} is '{value}', expected '{HARDENED_SETTINGS[key]}'")
        if overrides:
            raise ProvisioningError(
                "SSH hardening is overridden by another configuration file! Hardening fragment removed"
            )
        accepted = True
    finally:
        if not accepted:
            context.hardening_fragment.unlink(missing_ok=True)
    log_info("SSH configuration is valid")

    edit_file(context.sshd_config, "PermitEmptyPasswords", "no")
    restart_sshd(context)
    wait_for_sshd(context)
