"""
Usage export service: CSV, JSON and Excel renderings of usage records.
"""
import csv
import json
from io import BytesIO, StringIO
from typing import List, Literal, Optional

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill

from orchestrator.api.schemas import UsageFilter, UsageRecordResponse
from orchestrator.core.logger import get_logger
from orchestrator.services.ledger import UsageLedger

logger = get_logger(__name__)

ExportFormat = Literal["csv", "json", "xlsx"]

EXPORT_COLUMNS = [
    "id", "created_at", "user_id", "provider_id", "provider_name", "provider_type",
    "model", "tokens_in", "tokens_out", "cost_usd", "latency_ms", "success",
    "error_kind", "error_message",
]

MEDIA_TYPES = {
    "csv": "text/csv",
    "json": "application/json",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def _row(record: UsageRecordResponse) -> List[object]:
    data = record.model_dump(mode="json")
    return [data[column] for column in EXPORT_COLUMNS]


class UsageExportService:
    """Renders usage records for download."""

    def __init__(self, ledger: UsageLedger):
        self.ledger = ledger

    async def export(self, format: ExportFormat, filter: Optional[UsageFilter] = None) -> BytesIO:
        """
        Export usage records.

        Args:
            format: csv, json or xlsx
            filter: Optional record filter

        Returns:
            BytesIO: Encoded file contents
        """
        records = await self.ledger.list_records(filter)
        logger.info("Exporting usage records", format=format, count=len(records))

        if format == "csv":
            return self.to_csv(records)
        if format == "json":
            return self.to_json(records)
        if format == "xlsx":
            return self.to_xlsx(records)
        raise ValueError(f"Unsupported export format: {format}")

    @staticmethod
    def to_csv(records: List[UsageRecordResponse]) -> BytesIO:
        buffer = StringIO()
        writer = csv.writer(buffer)
        writer.writerow(EXPORT_COLUMNS)
        for record in records:
            writer.writerow(_row(record))
        return BytesIO(buffer.getvalue().encode("utf-8"))

    @staticmethod
    def to_json(records: List[UsageRecordResponse]) -> BytesIO:
        payload = [record.model_dump(mode="json") for record in records]
        return BytesIO(json.dumps(payload, indent=2).encode("utf-8"))

    @staticmethod
    def to_xlsx(records: List[UsageRecordResponse]) -> BytesIO:
        wb = Workbook()
        ws = wb.active
        ws.title = "Usage"

        ws.append(EXPORT_COLUMNS)
        header_fill = PatternFill(start_color="366092", end_color="366092", fill_type="solid")
        header_font = Font(bold=True, color="FFFFFF")
        for cell in ws[1]:
            cell.fill = header_fill
            cell.font = header_font
            cell.alignment = Alignment(horizontal='center')

        for record in records:
            ws.append(_row(record))

        ws.column_dimensions['A'].width = 38
        ws.column_dimensions['B'].width = 22
        ws.column_dimensions['G'].width = 30

        output = BytesIO()
        wb.save(output)
        output.seek(0)
        return output
