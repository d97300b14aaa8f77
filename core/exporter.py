"""CSV export of unified applications."""

import csv
import io
from datetime import date
from typing import Iterable, Optional

from core.transformer import UnifiedApplication
from utils import format_date

TYPE_LABELS = {
    "whitelist": "Whitelist",
    "staff": "Staff",
    "police": "Police",
    "ems": "EMS",
    "mechanic": "Mechanic",
    "judge": "Judge",
    "attorney": "Attorney",
    "firefighter": "Firefighter",
    "weazel_news": "Weazel News",
    "pdm": "PDM",
    "gang": "Gang",
    "creator": "Creator",
    "state": "State Dept",
    "ban_appeal": "Ban Appeal",
}

CSV_HEADERS = [
    "ID",
    "Applicant Name",
    "Type",
    "Organization",
    "Discord ID",
    "Status",
    "Handled By",
    "Admin Notes",
    "Submitted Date",
    "Application Details",
]


def application_details(app: UnifiedApplication) -> str:
    """Flatten the field list into "Label: value | Label: value"."""
    return " | ".join(
        f"{item.label}: {'N/A' if item.value is None else item.value}" for item in app.fields
    )


def application_csv_row(app: UnifiedApplication) -> list:
    status = app.status or ""
    return [
        app.id,
        app.applicant_name,
        TYPE_LABELS.get(app.application_type, app.application_type),
        app.organization or "",
        app.discord_id or "",
        status[:1].upper() + status[1:],
        app.handled_by or "-",
        app.admin_notes or "",
        format_date(app.created_at),
        application_details(app),
    ]


def export_applications_to_csv(applications: Iterable[UnifiedApplication]) -> str:
    """
    Render applications as CSV text.

    Values containing commas, quotes or newlines are quoted with embedded
    quotes doubled, so any standard CSV reader gets the original text back.

    Raises:
        ValueError: there is nothing to export
    """
    applications = list(applications)
    if not applications:
        raise ValueError("No applications to export")

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for app in applications:
        writer.writerow(application_csv_row(app))
    return buffer.getvalue()


def export_filename(prefix: str = "applications", today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"{prefix}-{today.isoformat()}.csv"
