"""Run-wide configuration snapshot."""
import socket
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from vmsetup import utils

DEFAULT_SERVICE_USER = "supcip"
DEFAULT_MONITORING_SERVER = "200.187.67.220"
DEFAULT_TIMEZONE = "America/Sao_Paulo"
DEFAULT_TIME_LOCALE = "en_GB.UTF-8"
DEFAULT_CONFIRM_TOKEN = "Sim"
MONITORING_PORT = 10050


def detect_primary_ip() -> str:
    """First address reported by ``hostname -I``, or loopback when there is none."""
    try:
        addresses = str(utils.run("hostname", "-I")).split()
    except Exception:  # sh raises ErrorReturnCode_X or CommandNotFound
        addresses = []
    return addresses[0] if addresses else "127.0.0.1"


def detect_sshd_service(unit_dirs=("/lib/systemd/system", "/usr/lib/systemd/system", "/etc/systemd/system")) -> str:
    """Debian names the unit ``ssh``, most other distributions ``sshd``."""
    for unit_dir in unit_dirs:
        if (Path(unit_dir) / "ssh.service").exists():
            return "ssh"
    return "sshd"


@dataclass(frozen=True)
class HostContext:
    """Everything the workflow needs to know about the host, captured once.

    Phases receive this object instead of querying the hostname, address or
    clock themselves, so every step of a run sees the same values.
    """
    hostname: str
    ip_address: str
    started_at: datetime
    service_user: str = DEFAULT_SERVICE_USER
    monitoring_server: str = DEFAULT_MONITORING_SERVER
    timezone: str = DEFAULT_TIMEZONE
    time_locale: str = DEFAULT_TIME_LOCALE
    confirm_token: str = DEFAULT_CONFIRM_TOKEN
    ssh_hardening: bool = True
    sshd_service: str = "ssh"
    root_home: Path = Path("/root")
    home_base: Path = Path("/home")
    ssh_config_dir: Path = Path("/etc/ssh")
    sudoers_dir: Path = Path("/etc/sudoers.d")
    zabbix_config_dir: Path = Path("/etc/zabbix")
    liveness_attempts: int = 5
    liveness_interval: float = 2.0

    @classmethod
    def capture(cls, **overrides) -> "HostContext":
        """Snapshot the live host, applying any explicit overrides."""
        values = dict(
            hostname=socket.gethostname(),
            ip_address=detect_primary_ip(),
            started_at=datetime.now(),
            sshd_service=detect_sshd_service(),
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def key_path(self) -> Path:
        return self.root_home / ".ssh" / self.hostname

    @property
    def public_key_path(self) -> Path:
        return self.key_path.with_name(self.key_path.name + ".pub")

    @property
    def service_home(self) -> Path:
        return self.home_base / self.service_user

    @property
    def authorized_keys_path(self) -> Path:
        return self.service_home / ".ssh" / "authorized_keys"

    @property
    def sudoers_path(self) -> Path:
        return self.sudoers_dir / self.service_user

    @property
    def sshd_config(self) -> Path:
        return self.ssh_config_dir / "sshd_config"

    @property
    def hardening_fragment(self) -> Path:
        return self.ssh_config_dir / "sshd_config.d" / "99-hardening.conf"

    @property
    def backup_path(self) -> Path:
        stamp = self.started_at.strftime("%Y%m%d_%H%M%S")
        return self.ssh_config_dir / f"sshd_config.backup.{stamp}"

    @property
    def nvim_config_dir(self) -> Path:
        return self.root_home / ".config" / "nvim"

    @property
    def bashrc(self) -> Path:
        return self.root_home / ".bashrc"

    @property
    def key_comment(self) -> str:
        return f"SSH Key - {self.hostname} - {self.started_at:%Y-%m-%d}"


def load_template(name: str) -> str:
    """Read a file shipped under vmsetup/configs."""
    template_path = Path(__file__).parent / "configs" / name
    with open(template_path, 'r') as f:
        return f.read()
