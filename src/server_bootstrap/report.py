"""Collects facet outcomes and prints the closing summary."""

from collections import Counter
from typing import Dict, List

import structlog

from server_bootstrap.types import FacetResult, Outcome

logger = structlog.get_logger(__name__)

_LOG_METHOD = {
    Outcome.APPLIED: "info",
    Outcome.ALREADY_SATISFIED: "info",
    Outcome.SKIPPED: "info",
    Outcome.WARNING: "warning",
    Outcome.FATAL: "error",
}


class ReportCollector:
    """Ordered record of what each facet did. Observational only."""

    def __init__(self) -> None:
        self.results: List[FacetResult] = []

    def add(self, result: FacetResult) -> None:
        """Record a result and log it at a level matching its outcome."""
        self.results.append(result)
        log = getattr(logger, _LOG_METHOD[result.outcome])
        log(result.facet, outcome=result.outcome.value, detail=result.detail)

    def counts(self) -> Dict[Outcome, int]:
        """Number of facets per outcome."""
        return dict(Counter(r.outcome for r in self.results))

    @property
    def has_fatal(self) -> bool:
        return any(r.outcome == Outcome.FATAL for r in self.results)

    @property
    def warnings(self) -> List[FacetResult]:
        return [r for r in self.results if r.outcome == Outcome.WARNING]

    def summary(self) -> str:
        """Human-readable table of results in execution order."""
        width = max([len(r.facet) for r in self.results] + [5])
        lines = ["Bootstrap summary:"]
        for r in self.results:
            line = f"  {r.facet:<{width}}  {r.outcome.value:<17}"
            if r.detail:
                line += f"  {r.detail}"
            lines.append(line.rstrip())

        counts = self.counts()
        totals = ", ".join(f"{n} {o.value}" for o, n in counts.items())
        lines.append(f"  {len(self.results)} facets: {totals}" if totals else "  no facets run")
        return "\n".join(lines)
