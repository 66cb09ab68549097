"""
Calculation Excel Export Service.
Writes a solved calculation report to an xlsx workbook.
"""
from io import BytesIO
from datetime import datetime
from typing import Any
from openpyxl import Workbook
from openpyxl.styles import Font, Alignment, PatternFill, Border, Side
from openpyxl.utils import get_column_letter

from npk_calc.services.dosing_report import CalculationReport
from npk_calc.services.nutrient_elements import ELEMENTS_MAX, to_name

HEADER_DARK = "059669"
HEADER_BG = "D1FAE5"


class CalculationExcelError(ValueError):
    """Raised when a report without results is exported."""


class CalculationExcelService:
    """Service for generating calculation Excel reports."""

    def __init__(self):
        self.header_fill = PatternFill(start_color=HEADER_DARK, end_color=HEADER_DARK, fill_type="solid")
        self.header_font = Font(bold=True, color="FFFFFF", size=11)
        self.title_font = Font(bold=True, size=16, color=HEADER_DARK)
        self.light_fill = PatternFill(start_color=HEADER_BG, end_color=HEADER_BG, fill_type="solid")
        self.border = Border(
            left=Side(style='thin'),
            right=Side(style='thin'),
            top=Side(style='thin'),
            bottom=Side(style='thin')
        )

    def _apply_header_style(self, ws, row_num: int, max_col: int):
        """Apply header styling to a row."""
        for col in range(1, max_col + 1):
            cell = ws.cell(row=row_num, column=col)
            cell.fill = self.header_fill
            cell.font = self.header_font
            cell.alignment = Alignment(horizontal='center', vertical='center', wrap_text=True)
            cell.border = self.border

    def _auto_adjust_columns(self, ws):
        """Auto-adjust column widths."""
        for column in ws.columns:
            max_length = 0
            column_letter = get_column_letter(column[0].column)
            for cell in column:
                if cell.value is not None:
                    max_length = max(max_length, len(str(cell.value)))
            ws.column_dimensions[column_letter].width = min(max(max_length + 2, 12), 40)

    def generate_calculation_excel(self, report: CalculationReport, name: str = "Calculation") -> BytesIO:
        """
        Generate Excel report for a solved calculation.

        Args:
            report: Report with status OK
            name: Calculation name shown in the summary

        Returns:
            BytesIO with Excel file content
        """
        if not report.ok:
            raise CalculationExcelError(f"Cannot export a report with status {report.status.value}")

        wb = Workbook()
        if wb.active:
            wb.remove(wb.active)

        self._create_summary_sheet(wb, report, name)
        self._create_dosing_sheet(wb, report)
        self._create_balance_sheet(wb, report)

        buffer = BytesIO()
        wb.save(buffer)
        buffer.seek(0)
        return buffer

    def _create_summary_sheet(self, wb, report: CalculationReport, name: str) -> Any:
        ws = wb.create_sheet("Summary")
        row = 1

        ws.cell(row=row, column=1, value="NUTRIENT SOLUTION").font = self.title_font
        ws.merge_cells(f'A{row}:C{row}')
        row += 1
        ws.cell(row=row, column=1, value=f"Generated: {datetime.now().strftime('%d/%m/%Y %H:%M')}").font = Font(italic=True)
        row += 2

        info = [
            ("Calculation:", name),
            ("Volume (L):", round(report.volume, 3)),
            ("Total ppm:", round(report.total_ppm, 2)),
            ("Deviation (%):", round(report.total_deviation_pct, 2)),
            ("EC (mS/cm):", round(report.ec, 2)),
            ("Cost:", round(report.cost, 2)),
        ]
        if report.ratio is not None:
            info.extend([
                ("N-NH4 %:", round(report.ratio.nh4_percent, 2)),
                ("N:K:", round(report.ratio.nk, 2)),
                ("K:Ca:", round(report.ratio.kca, 2)),
                ("K:Mg:", round(report.ratio.kmg, 2)),
                ("Ca:Mg:", round(report.ratio.camg, 2)),
            ])
        for label, value in info:
            ws.cell(row=row, column=1, value=label).font = Font(bold=True)
            ws.cell(row=row, column=2, value=value)
            row += 1

        self._auto_adjust_columns(ws)
        return ws

    def _create_dosing_sheet(self, wb, report: CalculationReport) -> Any:
        ws = wb.create_sheet("Dosing")
        headers = ["Bottle", "Fertilizer", "Dose (mg/L)", "Amount", "Unit"]
        for col, header in enumerate(headers, 1):
            ws.cell(row=1, column=col, value=header)
        self._apply_header_style(ws, 1, len(headers))

        row = 2
        for bottle, amounts in report.bottles.items():
            for amount in amounts:
                values = [bottle.value, amount.fertilizer.name, round(amount.x, 3), round(amount.amount, 2), amount.unit]
                for col, value in enumerate(values, 1):
                    cell = ws.cell(row=row, column=col, value=value)
                    cell.border = self.border
                    if bottle.value == "B":
                        cell.fill = self.light_fill
                row += 1

        self._auto_adjust_columns(ws)
        return ws

    def _create_balance_sheet(self, wb, report: CalculationReport) -> Any:
        ws = wb.create_sheet("Nutrient balance")
        headers = ["Element", "Target (ppm)", "Achieved (ppm)", "Deviation (%)"]
        for col, header in enumerate(headers, 1):
            ws.cell(row=1, column=col, value=header)
        self._apply_header_style(ws, 1, len(headers))

        row = 2
        for k in range(ELEMENTS_MAX):
            deviation = report.deviation_pct[k]
            values = [
                to_name(k),
                round(report.targets[k], 3),
                round(report.achieved_ppm[k], 3),
                round(deviation, 2) if deviation is not None else None,
            ]
            for col, value in enumerate(values, 1):
                ws.cell(row=row, column=col, value=value).border = self.border
            row += 1

        self._auto_adjust_columns(ws)
        return ws


calculation_excel_service = CalculationExcelService()
