"""Audit trail export to JSON, CSV, XML and plain text."""

import csv
import io
import json
import xml.etree.ElementTree as ET
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from pimflow.domain.interfaces.audit_store import AuditQuery
from pimflow.domain.models.audit_entry import AuditTrailEntry
from pimflow.domain.models.clock import utc_now


class ExportFormat(str, Enum):
    """Supported export formats."""

    Json = "json"
    Csv = "csv"
    Xml = "xml"
    Text = "text"


class UnsupportedExportFormatError(Exception):
    """Raised when an export is requested in an unknown format."""

    pass


class AuditExportOptions(BaseModel):
    """What to export and how."""

    format: ExportFormat = Field(default=ExportFormat.Json)
    query: AuditQuery | None = Field(default=None, description="Entries to export; all when None")
    include_field_changes: bool = Field(default=True)
    include_metadata: bool = Field(default=True)


CSV_HEADERS = [
    "ID",
    "Timestamp",
    "Actor ID",
    "Actor Role",
    "Actor Email",
    "Action",
    "Product ID",
    "Workflow State",
    "Reason",
    "Priority",
    "IP Address",
    "Session ID",
    "Request ID",
    "Integrity Hash",
    "Chain Hash",
    "Archived",
    "Archived At",
    "Retention Days",
    "Expires At",
]


def _iso(value: Any) -> str:
    return value.isoformat() if value is not None else ""


class AuditTrailExporter:
    """Renders audit entries in one of the ExportFormat formats."""

    def export(self, entries: list[AuditTrailEntry], options: AuditExportOptions) -> str:
        """Render ``entries`` as text in the requested format.

        Raises:
            UnsupportedExportFormatError: If the format is unknown.
        """
        renderers = {
            ExportFormat.Json: self._to_json,
            ExportFormat.Csv: self._to_csv,
            ExportFormat.Xml: self._to_xml,
            ExportFormat.Text: self._to_text,
        }
        try:
            renderer = renderers[ExportFormat(options.format)]
        except (KeyError, ValueError):
            raise UnsupportedExportFormatError(
                f"Unsupported export format: {options.format}"
            ) from None
        return renderer(entries, options)

    def _to_json(self, entries: list[AuditTrailEntry], options: AuditExportOptions) -> str:
        exclude: set[str] = set()
        if not options.include_field_changes:
            exclude.add("field_changes")
        if not options.include_metadata:
            exclude.add("metadata")
        return json.dumps(
            [entry.model_dump(mode="json", exclude=exclude) for entry in entries],
            indent=2,
        )

    def _to_csv(self, entries: list[AuditTrailEntry], options: AuditExportOptions) -> str:
        headers = list(CSV_HEADERS)
        if options.include_field_changes:
            headers.append("Field Changes")
        if options.include_metadata:
            headers.append("Metadata")

        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(headers)
        for entry in entries:
            row = [
                entry.id,
                _iso(entry.timestamp),
                entry.actor_id,
                entry.actor_role.value,
                entry.actor_email,
                entry.action.value,
                entry.subject_id or "",
                entry.workflow_state.value if entry.workflow_state else "",
                entry.reason or "",
                entry.priority.value,
                entry.ip_address or "",
                entry.session_id or "",
                entry.request_id or "",
                entry.integrity_hash or "",
                entry.chain_hash or "",
                str(entry.archived).lower(),
                _iso(entry.archived_at),
                entry.retention_days,
                _iso(entry.expires_at),
            ]
            if options.include_field_changes:
                row.append(
                    json.dumps([c.model_dump(mode="json") for c in entry.field_changes])
                )
            if options.include_metadata:
                row.append(json.dumps(entry.metadata, default=str))
            writer.writerow(row)
        return buffer.getvalue()

    def _to_xml(self, entries: list[AuditTrailEntry], options: AuditExportOptions) -> str:
        root = ET.Element("auditTrail")
        for entry in entries:
            node = ET.SubElement(root, "entry")
            fields = {
                "id": entry.id,
                "timestamp": _iso(entry.timestamp),
                "actorId": entry.actor_id,
                "actorRole": entry.actor_role.value,
                "actorEmail": entry.actor_email,
                "action": entry.action.value,
                "productId": entry.subject_id or "",
                "workflowState": entry.workflow_state.value if entry.workflow_state else "",
                "reason": entry.reason or "",
                "priority": entry.priority.value,
                "ipAddress": entry.ip_address or "",
                "sessionId": entry.session_id or "",
                "requestId": entry.request_id or "",
                "integrityHash": entry.integrity_hash or "",
                "chainHash": entry.chain_hash or "",
                "archived": str(entry.archived).lower(),
                "archivedAt": _iso(entry.archived_at),
                "retentionDays": str(entry.retention_days),
                "expiresAt": _iso(entry.expires_at),
            }
            for tag, text in fields.items():
                ET.SubElement(node, tag).text = text

            if options.include_field_changes and entry.field_changes:
                changes = ET.SubElement(node, "fieldChanges")
                for change in entry.field_changes:
                    change_node = ET.SubElement(changes, "change")
                    ET.SubElement(change_node, "field").text = change.field
                    ET.SubElement(change_node, "oldValue").text = _scalar(change.old_value)
                    ET.SubElement(change_node, "newValue").text = _scalar(change.new_value)

            if options.include_metadata and entry.metadata:
                ET.SubElement(node, "metadata").text = json.dumps(entry.metadata, default=str)

        ET.indent(root, space="  ")
        body = ET.tostring(root, encoding="unicode")
        return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}\n'

    def _to_text(self, entries: list[AuditTrailEntry], options: AuditExportOptions) -> str:
        lines = [
            "AUDIT TRAIL REPORT",
            "==================",
            "",
            f"Generated: {utc_now().isoformat()}",
            f"Total Entries: {len(entries)}",
            "",
        ]
        for entry in entries:
            lines.extend(
                [
                    f"Entry ID: {entry.id}",
                    f"Timestamp: {_iso(entry.timestamp)}",
                    f"User: {entry.actor_email or entry.actor_id} ({entry.actor_role.value})",
                    f"Action: {entry.action.value}",
                    f"Product ID: {entry.subject_id or 'N/A'}",
                    f"Reason: {entry.reason or 'N/A'}",
                    f"Priority: {entry.priority.value}",
                ]
            )
            if options.include_field_changes:
                for change in entry.field_changes:
                    lines.append(
                        f"  {change.field}: {_scalar(change.old_value)} -> {_scalar(change.new_value)}"
                    )
            lines.append("---")
        return "\n".join(lines) + "\n"


def _scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)
