"""Server Bootstrap - one-shot hardening for freshly provisioned Linux hosts."""

__version__ = "1.0.0"
__license__ = "MIT"

from server_bootstrap.exceptions import (
    BootstrapError,
    FacetError,
    InvalidArgumentError,
    PrivilegeError,
    SystemRequirementError,
)
from server_bootstrap.applier import HostApplier
from server_bootstrap.orchestrator import Orchestrator
from server_bootstrap.system_info import probe

__all__ = [
    "HostApplier",
    "Orchestrator",
    "probe",
    "BootstrapError",
    "FacetError",
    "InvalidArgumentError",
    "PrivilegeError",
    "SystemRequirementError",
]
