"""Tests for AuditTrailExporter."""

import csv
import io
import json
import xml.etree.ElementTree as ET
from datetime import timedelta

import pytest

from fixtures.workflow_data import BASE_TIME
from pimflow.domain.components.audit_exporter import (
    CSV_HEADERS,
    AuditExportOptions,
    AuditTrailExporter,
    ExportFormat,
    UnsupportedExportFormatError,
)
from pimflow.domain.models.audit_entry import (
    AuditAction,
    AuditPriority,
    AuditTrailEntry,
    FieldChange,
)
from pimflow.domain.models.workflow import UserRole, WorkflowState


def _entries() -> list[AuditTrailEntry]:
    return [
        AuditTrailEntry(
            id="a1",
            timestamp=BASE_TIME,
            actor_id="reviewer-1",
            actor_role=UserRole.Reviewer,
            actor_email="reviewer@example.com",
            action=AuditAction.StateTransition,
            subject_id="prod-1",
            workflow_state=WorkflowState.Rejected,
            field_changes=[
                FieldChange(field="workflowState", old_value="review", new_value="rejected")
            ],
            reason="Missing images, see notes",
            priority=AuditPriority.High,
            metadata={"workflow_action": "reject"},
            expires_at=BASE_TIME + timedelta(days=730),
        ),
        AuditTrailEntry(
            id="a2",
            timestamp=BASE_TIME + timedelta(minutes=1),
            actor_id="editor-1",
            actor_role=UserRole.Editor,
            action=AuditAction.ProductUpdated,
            subject_id="prod-1",
            field_changes=[
                FieldChange(field="basic_info.name", old_value={"en": "A"}, new_value={"en": "B"})
            ],
            expires_at=BASE_TIME + timedelta(days=730),
        ),
    ]


class TestAuditTrailExporter:
    """Tests for every export format."""

    def setup_method(self) -> None:
        """Set up test environment."""
        self.exporter = AuditTrailExporter()

    def test_json(self) -> None:
        """Test that JSON export round-trips through json.loads."""
        data = json.loads(self.exporter.export(_entries(), AuditExportOptions()))
        assert [item["id"] for item in data] == ["a1", "a2"]
        assert data[0]["action"] == "state_transition"
        assert data[0]["field_changes"][0]["new_value"] == "rejected"

    def test_json_without_details(self) -> None:
        """Test that excluded sections are left out of the JSON."""
        options = AuditExportOptions(include_field_changes=False, include_metadata=False)
        data = json.loads(self.exporter.export(_entries(), options))
        assert "field_changes" not in data[0]
        assert "metadata" not in data[0]

    def test_csv(self) -> None:
        """Test CSV headers and quoting of values with commas."""
        output = self.exporter.export(_entries(), AuditExportOptions(format=ExportFormat.Csv))
        rows = list(csv.reader(io.StringIO(output)))

        assert rows[0] == [*CSV_HEADERS, "Field Changes", "Metadata"]
        assert len(rows) == 3
        assert rows[1][0] == "a1"
        assert rows[1][8] == "Missing images, see notes"
        assert json.loads(rows[1][-1]) == {"workflow_action": "reject"}

    def test_csv_without_details(self) -> None:
        """Test that optional CSV columns are dropped."""
        options = AuditExportOptions(
            format=ExportFormat.Csv, include_field_changes=False, include_metadata=False
        )
        rows = list(csv.reader(io.StringIO(self.exporter.export(_entries(), options))))
        assert rows[0] == CSV_HEADERS

    def test_xml(self) -> None:
        """Test that XML export is well formed."""
        output = self.exporter.export(_entries(), AuditExportOptions(format=ExportFormat.Xml))
        assert output.startswith('<?xml version="1.0" encoding="UTF-8"?>')

        root = ET.fromstring(output.split("\n", 1)[1])
        entries = root.findall("entry")
        assert [node.findtext("id") for node in entries] == ["a1", "a2"]
        assert entries[0].findtext("workflowState") == "rejected"
        assert entries[1].find("fieldChanges/change/oldValue").text == '{"en": "A"}'
        assert entries[1].find("metadata") is None

    def test_text(self) -> None:
        """Test the plain text report."""
        output = self.exporter.export(_entries(), AuditExportOptions(format=ExportFormat.Text))
        assert output.startswith("AUDIT TRAIL REPORT")
        assert "Total Entries: 2" in output
        assert "User: reviewer@example.com (reviewer)" in output
        assert "User: editor-1 (editor)" in output
        assert "  workflowState: review -> rejected" in output

    def test_empty(self) -> None:
        """Test exporting no entries."""
        assert json.loads(self.exporter.export([], AuditExportOptions())) == []

    def test_unsupported_format(self) -> None:
        """Test that an unknown format is rejected."""
        options = AuditExportOptions.model_construct(format="pdf")
        with pytest.raises(UnsupportedExportFormatError, match="pdf"):
            self.exporter.export(_entries(), options)
