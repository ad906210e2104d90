from __future__ import annotations

import html
import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from eventmail.errors import NotificationFailure
from eventmail.services.notifiers import Notifier


logger = logging.getLogger("eventmail.alerts")

TRIGGER_COLUMN = "Triggered"
MAX_ALERT_ROWS = 50


def _lookup(row: Mapping[str, Any], column: str) -> Any:
    if column in row:
        return row[column]
    wanted = column.lower()
    for k, v in row.items():
        if str(k).lower() == wanted:
            return v
    return None


def is_triggered(row: Mapping[str, Any]) -> bool:
    # Only a real boolean True counts; 1, "true", NULL and missing columns do not.
    return _lookup(row, TRIGGER_COLUMN) is True


def triggered_rows(rows: Iterable[Mapping[str, Any]]) -> list[Mapping[str, Any]]:
    return [r for r in rows if is_triggered(r)]


def _cell(value: Any) -> str:
    return html.escape("" if value is None else str(value))


def build_html_body(job_name: str, rows: Sequence[Mapping[str, Any]]) -> str:
    name = html.escape(job_name)
    if not rows:
        return f"<p><b>{name}</b> returned no triggered rows.</p>"
    cols = list(rows[0].keys())
    parts = [
        f"<h3>Stored Procedure Triggered: {name}</h3>",
        "<p>One or more records returned <b>Triggered = True</b>.</p>",
        "<table border='1' cellpadding='4' cellspacing='0'><thead><tr>",
    ]
    parts.extend(f"<th>{html.escape(str(c))}</th>" for c in cols)
    parts.append("</tr></thead><tbody>")
    for r in rows:
        parts.append("<tr>")
        parts.extend(f"<td>{_cell(_lookup(r, str(c)))}</td>" for c in cols)
        parts.append("</tr>")
    parts.append("</tbody></table>")
    return "".join(parts)


def alert_subject(job_name: str) -> str:
    return f"SP Triggered: {job_name}"


def compose_and_send(
    job_name: str,
    rows: Iterable[Mapping[str, Any]],
    trigger_gate: bool,
    recipients: str,
    notifier: Notifier,
) -> bool:
    """
    Email the triggered rows of one procedure run.

    Returns True when an alert was delivered and False when the gate is off or
    no row is triggered. Raises NotificationFailure when the notifier reports
    failure or raises.
    """
    hits = triggered_rows(rows)
    if not trigger_gate or not hits:
        return False

    body = build_html_body(job_name, hits[:MAX_ALERT_ROWS])
    subject = alert_subject(job_name)
    try:
        ok = notifier.send(recipients, subject, body)
    except Exception as e:
        raise NotificationFailure(f"job={job_name} error={e}") from e
    if not ok:
        raise NotificationFailure(f"job={job_name} notifier reported failure")
    logger.info("Alert emailed for %s (%s triggered rows)", job_name, len(hits))
    return True
