"""Shared fixtures for the provisioning tests."""
from datetime import datetime
from pathlib import Path
from unittest.mock import patch

import pytest
import sh

from vmsetup import utils
from vmsetup.config import HostContext

SSHD_CONFIG = """\
Include /etc/ssh/sshd_config.d/*.conf

#PermitRootLogin prohibit-password
#PubkeyAuthentication yes
PasswordAuthentication no
#PermitEmptyPasswords no
KbdInteractiveAuthentication no
UsePAM yes
X11Forwarding yes
"""


@pytest.fixture(autouse=True)
def no_pacing(monkeypatch):
    monkeypatch.setattr(utils, "_pace", 0)


@pytest.fixture
def context(tmp_path):
    """A HostContext whose paths all live under tmp_path."""
    root_home = tmp_path / "root"
    (root_home / ".ssh").mkdir(parents=True)
    ssh_config_dir = tmp_path / "etc" / "ssh"
    (ssh_config_dir / "sshd_config.d").mkdir(parents=True)
    (ssh_config_dir / "sshd_config").write_text(SSHD_CONFIG)
    sudoers_dir = tmp_path / "etc" / "sudoers.d"
    sudoers_dir.mkdir()
    zabbix_config_dir = tmp_path / "etc" / "zabbix"
    zabbix_config_dir.mkdir()
    home_base = tmp_path / "home"
    home_base.mkdir()

    return HostContext(
        hostname="vm01",
        ip_address="10.0.0.5",
        started_at=datetime(2025, 10, 1, 12, 30, 45),
        root_home=root_home,
        home_base=home_base,
        ssh_config_dir=ssh_config_dir,
        sudoers_dir=sudoers_dir,
        zabbix_config_dir=zabbix_config_dir,
        liveness_interval=0,
    )


@pytest.fixture
def command_failure():
    """Build the exception sh raises for a command exiting with status 1."""
    def make(cmd: str = "command", stderr: bytes = b""):
        return sh.ErrorReturnCode_1(cmd, b"", stderr)
    return make


class FakeHost:
    """Stands in for the external commands of a fresh Debian host."""

    def __init__(self, context):
        self.context = context
        self.calls = []
        self.users = set()
        self.active = set()
        self.enabled = set()

    def __call__(self, command, *args, **kwargs):
        self.calls.append((command,) + args)
        if command == "apt-get" and "zabbix-agent2" in args:
            config_path = self.context.zabbix_config_dir / "zabbix_agent2.conf"
            config_path.write_text("Server=127.0.0.1\nServerActive=127.0.0.1\nHostname=Zabbix server\n")
        elif command == "ssh-keygen":
            key_path = Path(args[args.index("-f") + 1])
            key_path.write_text("PRIVATE KEY\n")
            key_path.with_name(key_path.name + ".pub").write_text("ssh-ed25519 AAAAC3Nza vm01\n")
        elif command == "id":
            if args[0] not in self.users:
                raise sh.ErrorReturnCode_1(f"id {args[0]}", b"", b"no such user")
        elif command == "useradd":
            self.users.add(args[-1])
            Path(args[args.index("-d") + 1]).mkdir(parents=True, exist_ok=True)
        elif command == "timedatectl" and args[0] == "show":
            return "America/Sao_Paulo\n"
        elif command == "sshd":
            fragment = self.context.hardening_fragment
            if fragment.exists() and "Bogus" in fragment.read_text():
                raise sh.ErrorReturnCode_255("sshd -t", b"", b"Bad configuration option: BogusOption")
            if args[0] == "-T":
                return "".join(f"{key.lower()} {value}\n" for key, value in self.merged().items())
        elif command == "systemctl":
            action, service = args[0], args[-1]
            if action == "restart":
                self.active.add(service)
            elif action == "enable":
                self.enabled.add(service)
            elif action == "is-active" and service not in self.active:
                raise sh.ErrorReturnCode_3(f"systemctl is-active {service}", b"", b"")
        return ""

    def config_files(self):
        """Drop-ins in lexical order, then the base file, as sshd reads them."""
        drop_ins = sorted((self.context.ssh_config_dir / "sshd_config.d").glob("*.conf"))
        return drop_ins + [self.context.sshd_config]

    def merged(self):
        """Directive values with the first occurrence winning."""
        settings = {}
        for path in self.config_files():
            if not path.exists():
                continue
            for line in path.read_text().splitlines():
                parts = line.split()
                if len(parts) == 2 and not parts[0].startswith("#"):
                    settings.setdefault(parts[0], parts[1])
        return settings

    def effective(self, key):
        """The value sshd would use for ``key``."""
        return self.merged().get(key)


@pytest.fixture
def fake_host(context):
    host = FakeHost(context)
    with patch('vmsetup.debian.run', side_effect=host), \
         patch('vmsetup.monitoring.run', side_effect=host), \
         patch('vmsetup.ssh.run', side_effect=host), \
         patch('vmsetup.monitoring.command_exists', side_effect=lambda command: command == 'ufw'), \
         patch('vmsetup.steps.platform.system', return_value='Linux'):
        yield host

