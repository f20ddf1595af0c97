"""
Report renderers.

Both renderers lay a ReportDocument out the same way: title, then one block
per section with its label/value rows followed by its free-text lines.
"""

from io import BytesIO
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import LETTER
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from reportlab.platypus.doctemplate import LayoutError

from fieldops.domain.exceptions import ReportRenderError
from fieldops.domain.interfaces import ReportRendererInterface
from fieldops.domain.models import ReportDocument


class PdfReportRenderer(ReportRendererInterface):
    """Letter-size PDF via reportlab."""

    content_type = "application/pdf"
    extension = "pdf"

    def __init__(self) -> None:
        styles = getSampleStyleSheet()
        self._title = styles["Title"]
        self._heading = styles["Heading2"]
        self._body = ParagraphStyle("ReportBody", parent=styles["BodyText"], fontSize=10, leading=14)
        self._label = ParagraphStyle("ReportLabel", parent=self._body, fontName="Helvetica-Bold")

    def render(self, report: ReportDocument) -> bytes:
        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=LETTER,
            title=report.title,
            leftMargin=18 * mm,
            rightMargin=18 * mm,
            topMargin=18 * mm,
            bottomMargin=18 * mm,
        )
        story = [Paragraph(escape(report.title), self._title), Spacer(1, 4 * mm)]
        for section in report.sections:
            story.append(Paragraph(escape(section.heading), self._heading))
            if section.rows:
                table = Table(
                    [
                        [Paragraph(escape(label), self._label), Paragraph(escape(value), self._body)]
                        for label, value in section.rows
                    ],
                    colWidths=[50 * mm, None],
                )
                table.setStyle(
                    TableStyle(
                        [
                            ("VALIGN", (0, 0), (-1, -1), "TOP"),
                            ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.lightgrey),
                        ]
                    )
                )
                story.append(table)
            for line in section.lines:
                story.append(Paragraph(escape(line), self._body))
            story.append(Spacer(1, 3 * mm))
        try:
            doc.build(story)
        except (LayoutError, ValueError) as e:
            raise ReportRenderError(f"Could not render {report.title}: {e}") from e
        return buffer.getvalue()


class PlainTextReportRenderer(ReportRendererInterface):
    """UTF-8 text rendering, for terminals and tests."""

    content_type = "text/plain"
    extension = "txt"

    def render(self, report: ReportDocument) -> bytes:
        out = [report.title, "=" * len(report.title), ""]
        for section in report.sections:
            out.append(section.heading)
            out.append("-" * len(section.heading))
            out.extend(f"{label}: {value}" for label, value in section.rows)
            out.extend(section.lines)
            out.append("")
        return "\n".join(out).encode("utf-8")
