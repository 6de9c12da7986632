"""
Coverage extraction and gating.

Reads the coverage tool's machine-readable XML report (JaCoCo layout) by
element and attribute name:

    <report name="orders">
      <package .../>
      <counter type="INSTRUCTION" missed="30" covered="70"/>
    </report>

Only the report-level counter counts; package/class counters further down the
tree are ignored. Also summarises JUnit-style test reports (Surefire layout).
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import structlog

from service_pipeline.errors import CoverageBelowThreshold, CoverageExtractionError
from service_pipeline.models import TestSummary

logger = structlog.get_logger(__name__)

COUNTER_TYPE = "INSTRUCTION"


@dataclass(frozen=True)
class CoverageCounter:
    covered: int
    missed: int

    @property
    def total(self) -> int:
        return self.covered + self.missed

    @property
    def percent(self) -> int:
        """Coverage percentage, truncated toward zero."""
        return coverage_percent(self.covered, self.missed)


def coverage_percent(covered: int, missed: int) -> int:
    """
    Compute ``covered * 100 / (covered + missed)`` with integer truncation.

    Raises:
        ValueError: If counts are negative or both zero
    """
    if covered < 0 or missed < 0:
        raise ValueError(f"negative coverage counts: covered={covered} missed={missed}")
    total = covered + missed
    if total == 0:
        raise ValueError("coverage counter has no instructions")
    return covered * 100 // total


def parse_coverage_counter(xml_text: str | bytes, service: str) -> CoverageCounter:
    """
    Read the report-level instruction counter from a coverage report.

    Raises:
        CoverageExtractionError: If the report is malformed or has no usable counter
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise CoverageExtractionError(service, f"malformed coverage report: {e}") from e

    counter = None
    for element in root.findall("counter"):
        if element.get("type") == COUNTER_TYPE:
            counter = element
            break

    if counter is None:
        raise CoverageExtractionError(
            service, f"no report-level {COUNTER_TYPE} counter in coverage report"
        )

    try:
        covered = int(counter.attrib["covered"])
        missed = int(counter.attrib["missed"])
    except KeyError as e:
        raise CoverageExtractionError(
            service, f"{COUNTER_TYPE} counter is missing attribute {e.args[0]!r}"
        ) from e
    except ValueError as e:
        raise CoverageExtractionError(service, f"non-integer {COUNTER_TYPE} counter: {e}") from e

    if covered < 0 or missed < 0 or covered + missed == 0:
        raise CoverageExtractionError(
            service, f"unusable {COUNTER_TYPE} counter: covered={covered} missed={missed}"
        )

    return CoverageCounter(covered=covered, missed=missed)


def read_coverage(report_path: Path, service: str) -> CoverageCounter:
    """Read and parse a coverage report file."""
    try:
        content = report_path.read_bytes()
    except OSError as e:
        raise CoverageExtractionError(
            service, f"coverage report not readable at {report_path}: {e.strerror or e}"
        ) from e
    return parse_coverage_counter(content, service)


def check_coverage_gate(service: str, counter: CoverageCounter, threshold: int) -> int:
    """
    Apply the coverage gate.

    Returns:
        The truncated percentage when it meets the threshold (inclusive)

    Raises:
        CoverageBelowThreshold: If the percentage is under the threshold
    """
    percent = counter.percent
    if percent < threshold:
        raise CoverageBelowThreshold(service, percent, threshold)
    return percent


def summarize_test_reports(report_paths: Iterable[Path]) -> TestSummary | None:
    """
    Sum test counts over JUnit-style XML reports.

    Unreadable or malformed reports are skipped with a warning; the summary is
    informational and never decides an outcome.

    Returns:
        Combined counts, or None when no report could be read
    """
    summary: TestSummary | None = None

    for path in report_paths:
        try:
            root = ET.parse(path).getroot()
        except (OSError, ET.ParseError) as e:
            logger.warning("test_report_unreadable", path=str(path), error=str(e))
            continue

        suites = [root] if root.tag == "testsuite" else root.findall("testsuite")
        for suite in suites:
            try:
                part = TestSummary(
                    tests=int(suite.get("tests", 0)),
                    failures=int(suite.get("failures", 0)),
                    errors=int(suite.get("errors", 0)),
                    skipped=int(suite.get("skipped", 0)),
                )
            except ValueError:
                logger.warning("test_report_bad_counts", path=str(path))
                continue
            if summary is None:
                summary = TestSummary()
            summary.merge(part)

    return summary
