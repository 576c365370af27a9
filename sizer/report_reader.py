"""
Read sizing figures back out of a generated report.

Two sources are supported:
- the JSON export (preferred): load_sizing_export() rebuilds the SizingReport;
- the HTML report, for tools that only have the HTML: values are located by
  their metric label, the same way the browser dashboard does it (first
  label containing the search text wins, value is the preceding element).
"""
import logging
import re
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Any, Dict, List, Optional, Tuple

from .models import SizingReport
from .utils import load_json

logger = logging.getLogger(__name__)

_NON_NUMERIC = re.compile(r'[^\d.\-]')


def parse_number(text: Optional[str]) -> Optional[float]:
    """'$1,234.56' -> 1234.56; None when nothing numeric remains (e.g. 'N/A')."""
    if text is None:
        return None
    cleaned = _NON_NUMERIC.sub('', text)
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


@dataclass
class ScrapedTable:
    heading: str
    css_class: str = ""
    rows: List[List[str]] = field(default_factory=list)


class _ReportParser(HTMLParser):
    """Collects metric panels (label, value) and table cell text in document order."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.panels: List[Tuple[str, str]] = []
        self.tables: List[ScrapedTable] = []

        self._capture: Optional[str] = None  # 'value' | 'label' | 'h3' | 'cell'
        self._div_stack: List[Optional[str]] = []
        self._buffer: List[str] = []
        self._pending_value: Optional[str] = None
        self._heading = ""
        self._table: Optional[ScrapedTable] = None
        self._row: Optional[List[str]] = None

    def handle_starttag(self, tag, attrs):
        classes = (dict(attrs).get('class') or '').split()
        if tag == 'div':
            role = None
            if 'metric-value' in classes:
                role = 'value'
            elif 'metric-label' in classes:
                role = 'label'
            self._div_stack.append(role)
            if role:
                self._capture = role
                self._buffer = []
        elif tag == 'h2':
            self._heading = ""
        elif tag == 'h3':
            self._capture = 'h3'
            self._buffer = []
        elif tag == 'table':
            self._table = ScrapedTable(heading=self._heading, css_class=' '.join(classes))
        elif tag == 'tr' and self._table is not None:
            self._row = []
        elif tag == 'td' and self._row is not None:
            self._capture = 'cell'
            self._buffer = []

    def handle_endtag(self, tag):
        if tag == 'div' and self._div_stack:
            role = self._div_stack.pop()
            text = ''.join(self._buffer).strip()
            if role == 'value':
                self._pending_value = text
            elif role == 'label':
                if self._pending_value is not None:
                    self.panels.append((text, self._pending_value))
                self._pending_value = None
            if role:
                self._capture = None
        elif tag == 'h3' and self._capture == 'h3':
            self._heading = ''.join(self._buffer).strip()
            self._capture = None
        elif tag == 'td' and self._capture == 'cell' and self._row is not None:
            self._row.append(''.join(self._buffer).strip())
            self._capture = None
        elif tag == 'tr' and self._row is not None and self._table is not None:
            # Header rows have no <td> cells
            if self._row:
                self._table.rows.append(self._row)
            self._row = None
        elif tag == 'table' and self._table is not None:
            self.tables.append(self._table)
            self._table = None

    def handle_data(self, data):
        if self._capture:
            self._buffer.append(data)


@dataclass
class ScrapedReport:
    """Label/value panels and tables scraped from an HTML sizing report."""
    panels: List[Tuple[str, str]] = field(default_factory=list)
    tables: List[ScrapedTable] = field(default_factory=list)

    def text(self, label: str) -> Optional[str]:
        """Value text of the first panel whose label contains `label`."""
        for panel_label, value in self.panels:
            if label in panel_label:
                return value
        return None

    def number(self, label: str) -> Optional[float]:
        return parse_number(self.text(label))

    @property
    def growth(self) -> Dict[Any, float]:
        """Growth rate (percent) -> projected GB, from every 3+ column row."""
        projections: Dict[Any, float] = {}
        for table in self.tables:
            for row in table.rows:
                if len(row) < 3:
                    continue
                rate = parse_number(row[0])
                projected = parse_number(row[1])
                if rate is None or projected is None:
                    continue
                projections[int(rate) if rate.is_integer() else rate] = projected
        return projections

    def top5(self, heading: str) -> List[Tuple[str, float]]:
        """(name, GB) rows of the table under the first heading containing `heading`."""
        for table in self.tables:
            if heading in table.heading:
                entries = []
                for row in table.rows:
                    if len(row) < 2:
                        continue
                    size = parse_number(row[1])
                    if size is not None:
                        entries.append((row[0], size))
                return entries
        return []


def read_report_html(html_text: str) -> ScrapedReport:
    """Parse an HTML sizing report."""
    parser = _ReportParser()
    parser.feed(html_text)
    parser.close()
    logger.debug(f"Scraped {len(parser.panels)} metric panels and {len(parser.tables)} tables")
    return ScrapedReport(panels=parser.panels, tables=parser.tables)


def extract_report_metrics(html_text: str) -> Dict[str, Optional[float]]:
    """
    Every metric panel of an HTML report as label -> number.

    Non-numeric characters are stripped before parsing; values with nothing
    numeric left ("N/A", a tenant name) map to None.
    """
    scraped = read_report_html(html_text)
    metrics: Dict[str, Optional[float]] = {}
    for label, value in scraped.panels:
        metrics.setdefault(label, parse_number(value))
    return metrics


def load_sizing_export(filepath: str) -> SizingReport:
    """Load a JSON export written by export_json()."""
    data = load_json(filepath)
    if 'licensing' not in data or 'cost' not in data:
        raise ValueError(f"{filepath} is not a sizing report export")
    return SizingReport.from_dict(data)
