"""
Export Utilities

Turn a saved search into shareable formats:
  - format_email(lead): The copy-paste text of a drafted email
  - CSV: one row per lead
  - Excel (.xlsx): "Leads" sheet plus a "Research Brief" sheet

Usage:
  from export import export_search_to_csv, export_search_to_excel
  export_search_to_excel(saved_search)
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import pandas as pd

from config import EXPORT_DIR
from models import Lead, SavedSearch

logger = logging.getLogger(__name__)

COLUMNS = [
    "Company",
    "Status",
    "Details",
    "Primary Contact",
    "Contacts",
    "Email Subject",
    "Email Body",
    "Sources",
    "Error",
]


def format_email(lead: Lead) -> Optional[str]:
    """The drafted email as plain text, or None if there's no complete draft."""
    if not lead.email_subject or not lead.email_body:
        return None
    return f"Subject: {lead.email_subject}\n\n{lead.email_body}"


def _contact_label(contact) -> str:
    parts = [p for p in (contact.name, contact.role, contact.email, contact.phone) if p]
    return " | ".join(parts)


def lead_to_row(lead: Lead) -> dict:
    """Flatten one lead into an export row."""
    primary = lead.primary_contact
    sources = lead.grounding_metadata.sources if lead.grounding_metadata else []
    return {
        "Company": lead.name,
        "Status": lead.status.value,
        "Details": "\n".join(lead.details or []),
        "Primary Contact": _contact_label(primary) if primary else "",
        "Contacts": "\n".join(_contact_label(c) for c in lead.contacts or []),
        "Email Subject": lead.email_subject or "",
        "Email Body": lead.email_body or "",
        "Sources": "\n".join(uri for uri, _title in sources),
        "Error": lead.error_message or "",
    }


def leads_to_dataframe(leads: list[Lead]) -> pd.DataFrame:
    return pd.DataFrame([lead_to_row(lead) for lead in leads], columns=COLUMNS)


def _default_path(search: SavedSearch, suffix: str) -> Path:
    stamp = datetime.fromtimestamp(search.timestamp / 1000).strftime("%Y-%m-%d_%H%M")
    return EXPORT_DIR / f"leads_{search.id[:8]}_{stamp}{suffix}"


def export_search_to_csv(search: SavedSearch, output_path: Optional[Path] = None) -> Path:
    """
    Write one CSV row per lead.

    Args:
        search: The saved search to export
        output_path: Destination file. Defaults to EXPORT_DIR/leads_<id>_<date>.csv
    """
    output_path = Path(output_path) if output_path else _default_path(search, ".csv")
    output_path.parent.mkdir(parents=True, exist_ok=True)

    leads_to_dataframe(search.leads).to_csv(output_path, index=False, encoding="utf-8")
    logger.info("Exported %d leads to: %s", len(search.leads), output_path)
    return output_path


def export_search_to_excel(search: SavedSearch, output_path: Optional[Path] = None) -> Path:
    """
    Write the leads and the brief that produced them to an Excel workbook.

    Args:
        search: The saved search to export
        output_path: Destination file. Defaults to EXPORT_DIR/leads_<id>_<date>.xlsx
    """
    output_path = Path(output_path) if output_path else _default_path(search, ".xlsx")
    output_path.parent.mkdir(parents=True, exist_ok=True)

    brief = search.user_input
    brief_df = pd.DataFrame(
        [
            ("Service Description", brief.service_description),
            ("Target Area", brief.target_area),
            ("Target Audience", brief.target_audience),
            ("Service URL", brief.service_url or ""),
            ("Summary", search.summary),
        ],
        columns=["Field", "Value"],
    )

    with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
        leads_to_dataframe(search.leads).to_excel(writer, sheet_name="Leads", index=False)
        brief_df.to_excel(writer, sheet_name="Research Brief", index=False)

    logger.info("Exported %d leads to: %s", len(search.leads), output_path)
    return output_path
