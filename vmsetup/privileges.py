"""Explicit privileged capabilities handed to the provisioning workflow."""
import enum
from dataclasses import dataclass
from typing import FrozenSet

from vmsetup import utils


class Capability(enum.Enum):
    PACKAGES = "package management"
    FILESYSTEM = "writes under protected paths"
    SERVICES = "service control"
    ACCOUNTS = "account management"


class MissingPrivilege(utils.ProvisioningError):
    pass


@dataclass(frozen=True)
class Privileges:
    """The set of capabilities a run was granted.

    Phases call ``require`` with the capabilities they need before touching
    the host, instead of assuming the process identity allows everything.
    """
    granted: FrozenSet[Capability] = frozenset()

    @classmethod
    def from_process(cls) -> "Privileges":
        """Root holds every capability; anyone else holds none."""
        if utils.is_root():
            return cls(frozenset(Capability))
        return cls()

    @property
    def is_root(self) -> bool:
        return self.granted == frozenset(Capability)

    def require(self, phase: str, *capabilities: Capability) -> None:
        missing = [c for c in capabilities if c not in self.granted]
        if missing:
            needed = ", ".join(c.value for c in missing)
            raise MissingPrivilege(f"{phase} requires: {needed}")
