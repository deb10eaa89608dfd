"""
Tests for export.py

Covers the copy-paste email format, row flattening, and CSV / Excel export
of a saved search.
"""

import pytest
import pandas as pd
from unittest.mock import patch

from export import (
    COLUMNS,
    export_search_to_csv,
    export_search_to_excel,
    format_email,
    lead_to_row,
)
from models import ContactInfo, GroundingMetadata, LeadStatus
from conftest import make_lead, make_saved_search


def _completed_lead():
    return make_lead(
        name="Acme Retail",
        status=LeadStatus.COMPLETED,
        details=["Opened a flagship store", "Hiring IT staff"],
        contacts=[
            ContactInfo(name="Bob", role="CFO"),
            ContactInfo(name="Jane Doe", role="COO", email="jane@acme.com", is_primary=True),
        ],
        email_subject="Quick idea for Acme",
        email_body="Dear Jane Doe,\n\nHello.",
        grounding_metadata=GroundingMetadata.model_validate({
            "groundingChunks": [{"web": {"uri": "https://acme.com/news", "title": "News"}}],
        }),
    )


# ═══════════════════════════════════════════════
# format_email
# ═══════════════════════════════════════════════

class TestFormatEmail:
    def test_format(self):
        assert format_email(_completed_lead()) == "Subject: Quick idea for Acme\n\nDear Jane Doe,\n\nHello."

    def test_incomplete_draft(self):
        assert format_email(make_lead()) is None
        assert format_email(make_lead(email_subject="s")) is None


# ═══════════════════════════════════════════════
# lead_to_row
# ═══════════════════════════════════════════════

class TestLeadToRow:
    def test_completed_lead(self):
        row = lead_to_row(_completed_lead())
        assert list(row) == COLUMNS
        assert row["Status"] == "completed"
        assert row["Details"] == "Opened a flagship store\nHiring IT staff"
        assert row["Primary Contact"] == "Jane Doe | COO | jane@acme.com"
        assert row["Contacts"].splitlines()[0] == "Bob | CFO"
        assert row["Sources"] == "https://acme.com/news"
        assert row["Error"] == ""

    def test_errored_lead(self):
        row = lead_to_row(make_lead(status=LeadStatus.ERROR_DETAILS, error_message="timeout"))
        assert row["Error"] == "timeout"
        assert row["Details"] == ""
        assert row["Primary Contact"] == ""


# ═══════════════════════════════════════════════
# File export
# ═══════════════════════════════════════════════

class TestFileExport:
    def test_csv(self, tmp_path):
        search = make_saved_search(leads=[_completed_lead(), make_lead(name="Beta")])
        path = export_search_to_csv(search, tmp_path / "out.csv")
        df = pd.read_csv(path)
        assert list(df.columns) == COLUMNS
        assert df["Company"].tolist() == ["Acme Retail", "Beta"]

    def test_excel(self, tmp_path):
        search = make_saved_search(leads=[_completed_lead()])
        path = export_search_to_excel(search, tmp_path / "out.xlsx")
        assert path.suffix == ".xlsx"
        sheets = pd.read_excel(path, sheet_name=None)
        assert set(sheets) == {"Leads", "Research Brief"}
        assert sheets["Leads"]["Email Subject"].tolist() == ["Quick idea for Acme"]
        brief_values = dict(zip(sheets["Research Brief"]["Field"], sheets["Research Brief"]["Value"]))
        assert brief_values["Target Area"] == "Austin, TX"

    def test_excel_with_no_leads(self, tmp_path):
        path = export_search_to_excel(make_saved_search(leads=[]), tmp_path / "empty.xlsx")
        sheets = pd.read_excel(path, sheet_name=None)
        assert sheets["Leads"].empty

    def test_default_path(self, tmp_path):
        search = make_saved_search(id="abcdef1234567890")
        with patch("export.EXPORT_DIR", tmp_path / "exports"):
            path = export_search_to_csv(search)
        assert path.parent == tmp_path / "exports"
        assert path.name.startswith("leads_abcdef12_")
        assert path.exists()
