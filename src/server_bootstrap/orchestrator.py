"""Runs the facets in dependency order."""

from typing import Callable, List, Optional, Tuple

import structlog

from server_bootstrap.applier import HostApplier
from server_bootstrap.exceptions import (
    CommandExecutionError,
    FacetError,
    SystemRequirementError,
)
from server_bootstrap.report import ReportCollector
from server_bootstrap.types import FacetResult, Outcome, PackageManager

logger = structlog.get_logger(__name__)

# User before its key; packages before the firewall and fail2ban they provide.
FACET_ORDER = [
    "timezone",
    "packages",
    "user",
    "ssh_key",
    "ssh_hardening",
    "firewall",
    "fail2ban",
    "unattended_upgrades",
    "motd",
]


class Orchestrator:
    """Sequence facets and stop at the first fatal one.

    There is no rollback: facets applied before a fatal failure stay applied.
    """

    def __init__(self, applier: HostApplier, report: Optional[ReportCollector] = None) -> None:
        self.applier = applier
        self.report = report or ReportCollector()

    def steps(self) -> List[Tuple[str, Callable[[], FacetResult]]]:
        return [(name, getattr(self.applier, f"apply_{name}")) for name in FACET_ORDER]

    def preflight(self) -> None:
        """Refuse to touch anything on hosts we cannot provision.

        Raises:
            SystemRequirementError: If no supported package manager was found
        """
        caps = self.applier.caps
        if caps.package_manager == PackageManager.NONE:
            raise SystemRequirementError("Unsupported package manager.")
        logger.info(
            "host_detected",
            distro=caps.distro,
            pkg_manager=caps.package_manager.value,
            firewall=caps.firewall_backend.value,
        )

    def run(self) -> ReportCollector:
        """Apply every facet in order.

        Raises:
            SystemRequirementError: If preflight fails
            FacetError: On the first fatal facet; later facets do not run
        """
        self.preflight()

        for name, step in self.steps():
            try:
                result = step()
            except (FacetError, CommandExecutionError) as e:
                result = FacetResult(name, Outcome.FATAL, str(e))

            self.report.add(result)
            if result.outcome == Outcome.FATAL:
                raise FacetError(name, result.detail)

        return self.report
