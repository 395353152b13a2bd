"""Report aggregation and CSV export helpers (pure, no I/O)."""

from __future__ import annotations

import csv
import io
from typing import Any, Iterable, Sequence

from ..models import PN_PATH, ActionResult, ActionStatus, UpdateReport, as_property_value, property_text

MISSING_VALUE = "-"


def aggregate(results: Iterable[ActionResult]) -> UpdateReport:
    """Collect per-node outcomes; ``total`` counts successes only."""
    actions = list(results)
    total = sum(1 for a in actions if a.status is ActionStatus.SUCCESS)
    return UpdateReport(total=total, actions=actions)


def summarize(report: UpdateReport) -> str:
    return (
        f"total={report.total} skipped={report.count(ActionStatus.SKIPPED)} "
        f"failed={report.count(ActionStatus.FAILED)}"
    )


def _cell(value: Any) -> str:
    if value is None or value == "":
        return MISSING_VALUE
    return property_text(as_property_value(value)) or MISSING_VALUE


def hits_to_csv(hits: Sequence[dict[str, Any]], properties: Sequence[str]) -> str | None:
    """Render hits as CSV: ``Path`` then one column per projected property.

    Every field is quoted with embedded quotes doubled. Returns None when
    there is nothing to export.
    """
    if not hits:
        return None

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(["Path", *properties])
    for hit in hits:
        writer.writerow([_cell(hit.get(PN_PATH)), *(_cell(hit.get(name)) for name in properties)])
    return buffer.getvalue().rstrip("\n")
