"""Keyword text sanitation, metric validation and quality filtering."""

import logging
import math
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from unidecode import unidecode

from keyword_pipeline.schemas.pipeline import CleaningConfig
from keyword_pipeline.services.types import KeywordRecord, ParseResult, ParseWarning

logger = logging.getLogger(__name__)

RawKeyword = str | Mapping[str, Any]

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_DISALLOWED_CHARS = re.compile(r"[^a-z0-9\s-]+")
_WHITESPACE = re.compile(r"\s+")
_ALNUM = re.compile(r"[a-z0-9]")
_THOUSANDS_SEPARATORS = re.compile(r"[,_\s]")


@dataclass
class CleaningReport:
    """Kept records plus an audit trail of degraded input."""

    keywords: list[KeywordRecord] = field(default_factory=list)
    warnings: list[ParseWarning] = field(default_factory=list)
    dropped: list[KeywordRecord] = field(default_factory=list)

    @property
    def input_count(self) -> int:
        return len(self.keywords) + len(self.dropped)


class DataCleaningService:
    """Sanitizes raw keyword rows into KeywordRecords.

    Malformed input never raises: bad numeric fields become None and
    unreadable phrases get a low quality score, so a single bad row cannot
    fail a batch.
    """

    def __init__(self, config: CleaningConfig | None = None) -> None:
        self.config = config or CleaningConfig()

    def sanitize_keyword(self, keyword: str | None) -> str:
        """Normalize phrase text; idempotent."""
        if not keyword:
            return ""
        clean = str(keyword)
        if self.config.transliterate:
            clean = unidecode(clean)
        clean = _CONTROL_CHARS.sub("", clean).lower()
        clean = _DISALLOWED_CHARS.sub("", clean)
        return _WHITESPACE.sub(" ", clean).strip()

    def parse_search_volume(self, value: Any, row_index: int | None = None) -> ParseResult[int]:
        """Parse a non-negative integer volume."""
        if value is None or value == "":
            return ParseResult(None)
        number = self._to_float(value)
        if number is None or number < 0:
            return ParseResult(
                None,
                ParseWarning("search_volume", value, "not a non-negative number", row_index),
            )
        return ParseResult(int(number))

    def parse_competition(self, value: Any, row_index: int | None = None) -> ParseResult[float]:
        """Parse a competition score in [0, 1]."""
        if value is None or value == "":
            return ParseResult(None)
        number = self._to_float(value)
        if number is None or not 0.0 <= number <= 1.0:
            return ParseResult(
                None,
                ParseWarning("competition", value, "not a number in [0, 1]", row_index),
            )
        return ParseResult(number)

    def parse_cpc(self, value: Any, row_index: int | None = None) -> ParseResult[float]:
        """Parse a non-negative cost-per-click."""
        if value is None or value == "":
            return ParseResult(None)
        number = self._to_float(value)
        if number is None or number < 0:
            return ParseResult(
                None,
                ParseWarning("cpc", value, "not a non-negative number", row_index),
            )
        return ParseResult(number)

    @staticmethod
    def normalize_row(raw: RawKeyword) -> dict[str, Any]:
        """Plain JSON-safe row; non-native scalars (numpy, Decimal) become strings."""
        if isinstance(raw, Mapping):
            fields = {
                "phrase": raw.get("phrase") or raw.get("keyword"),
                "search_volume": raw.get("search_volume"),
                "competition": raw.get("competition"),
                "cpc": raw.get("cpc"),
            }
        else:
            fields = {"phrase": raw, "search_volume": None, "competition": None, "cpc": None}

        return {
            key: value if value is None or isinstance(value, (str, int, float)) else str(value)
            for key, value in fields.items()
        }

    def assess_keyword_quality(self, cleaned: str) -> float:
        """Ratio of alphanumeric characters to phrase length, in [0, 1]."""
        if not cleaned:
            return 0.0
        if len(cleaned) < self.config.min_length or len(cleaned) > self.config.max_length:
            return 0.0
        ratio = len(_ALNUM.findall(cleaned)) / len(cleaned)
        return min(max(ratio, 0.0), 1.0)

    def clean_keyword(self, raw: RawKeyword, row_index: int | None = None) -> tuple[KeywordRecord, list[ParseWarning]]:
        """Build one record from a raw row, collecting field warnings."""
        if isinstance(raw, Mapping):
            phrase = raw.get("phrase") or raw.get("keyword") or ""
            volume = self.parse_search_volume(raw.get("search_volume"), row_index)
            competition = self.parse_competition(raw.get("competition"), row_index)
            cpc = self.parse_cpc(raw.get("cpc"), row_index)
        else:
            phrase = raw or ""
            volume = competition = cpc = ParseResult(None)

        phrase = str(phrase)
        cleaned = self.sanitize_keyword(phrase)
        warnings = [r.warning for r in (volume, competition, cpc) if r.warning is not None]
        if not cleaned:
            warnings.append(ParseWarning("phrase", phrase, "empty after cleaning", row_index))

        record = KeywordRecord(
            phrase=phrase,
            cleaned_phrase=cleaned,
            search_volume=volume.value,
            competition=competition.value,
            cpc=cpc.value,
            quality_score=self.assess_keyword_quality(cleaned),
        )
        return record, warnings

    def clean_with_report(self, raw_keywords: Iterable[RawKeyword]) -> CleaningReport:
        """Clean rows and keep the audit trail of degraded fields and dropped rows."""
        report = CleaningReport()
        threshold = self.config.quality_threshold
        for index, raw in enumerate(raw_keywords):
            record, warnings = self.clean_keyword(raw, row_index=index)
            report.warnings.extend(warnings)
            if record.quality_score >= threshold:
                report.keywords.append(record)
            else:
                report.dropped.append(record)

        if report.warnings or report.dropped:
            logger.info(
                "Cleaning degraded input",
                extra={
                    "input_count": report.input_count,
                    "kept": len(report.keywords),
                    "dropped": len(report.dropped),
                    "warnings": len(report.warnings),
                },
            )
        return report

    def clean_keywords(self, raw_keywords: Iterable[RawKeyword]) -> list[KeywordRecord]:
        """Clean rows and drop those below the quality threshold."""
        return self.clean_with_report(raw_keywords).keywords

    @staticmethod
    def _to_float(value: Any) -> float | None:
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            number = float(value)
        else:
            text = _THOUSANDS_SEPARATORS.sub("", str(value))
            try:
                number = float(text)
            except ValueError:
                return None
        if not math.isfinite(number):
            return None
        return number
