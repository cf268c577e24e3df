"""Species reference table.

Parses the bundled venom table (header row, then name, scientific name,
venom code and an optional details column) into a lookup keyed by the
normalized species name. Model labels use underscores for spaces, so every
name is registered both as written and with underscores replaced by spaces.
"""

import io
import logging
import warnings
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union

import pandas as pd

from ..exceptions import DataLoadError

logger = logging.getLogger(__name__)


class VenomCategory(Enum):
    """Venom category codes used in the reference table."""
    NON = "Non"
    MILD = "Mild"
    MODERATE = "Mod"
    HIGH = "High"
    UNKNOWN = "Unknown"

    @classmethod
    def from_code(cls, code: Optional[str]) -> "VenomCategory":
        """Map a raw table code to a category; unrecognized codes are UNKNOWN."""
        if code is None:
            return cls.UNKNOWN
        wanted = str(code).strip().lower()
        for category in cls:
            if category is not cls.UNKNOWN and category.value.lower() == wanted:
                return category
        return cls.UNKNOWN

    @property
    def display_name(self) -> str:
        return _VENOM_DISPLAY_NAMES[self]

    @property
    def is_venomous(self) -> bool:
        return self in (VenomCategory.MILD, VenomCategory.MODERATE, VenomCategory.HIGH)


_VENOM_DISPLAY_NAMES = {
    VenomCategory.NON: "Non-Venomous",
    VenomCategory.MILD: "Mildly Venomous",
    VenomCategory.MODERATE: "Moderately Venomous",
    VenomCategory.HIGH: "Highly Venomous",
    VenomCategory.UNKNOWN: "Unknown",
}


@dataclass(frozen=True)
class ReferenceRecord:
    """One row of the species reference table."""
    name: str
    scientific_name: str
    venom_code: str
    details: Optional[str] = None

    @property
    def venom_category(self) -> VenomCategory:
        return VenomCategory.from_code(self.venom_code)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        category = self.venom_category
        return {
            "name": self.name,
            "scientific_name": self.scientific_name,
            "venom_code": self.venom_code,
            "venom": category.display_name,
            "is_venomous": category.is_venomous,
            "details": self.details,
        }


def normalize_key(name: str) -> str:
    """Trim and lowercase a species name."""
    return str(name).strip().lower()


def key_variants(name: str) -> List[str]:
    """Return the normalized key and its underscore-to-space alias."""
    key = normalize_key(name)
    alias = key.replace("_", " ")
    return [key] if alias == key else [key, alias]


class ReferenceTable(Mapping[str, ReferenceRecord]):
    """Read-only mapping from normalized species name to ReferenceRecord."""

    def __init__(self, records: Iterable[ReferenceRecord] = ()):
        self._index: Dict[str, ReferenceRecord] = {}
        for record in records:
            for key in key_variants(record.name):
                # Duplicate keys: last write wins
                self._index[key] = record

    def __getitem__(self, key: str) -> ReferenceRecord:
        return self._index[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._index)

    def __len__(self) -> int:
        return len(self._index)

    @property
    def records(self) -> List[ReferenceRecord]:
        """Distinct records in first-registration order."""
        seen = {}
        for record in self._index.values():
            seen.setdefault(id(record), record)
        return list(seen.values())

    def lookup(self, label: str) -> Optional[ReferenceRecord]:
        """Find the record for a model label.

        Case, surrounding whitespace and underscores versus spaces are
        ignored. Returns None when no row matches.
        """
        for key in key_variants(label):
            record = self._index.get(key)
            if record is not None:
                return record
        return None


def _cell(value: Any) -> str:
    return "" if pd.isna(value) else str(value).strip()


def parse_reference_table(text: str, source: str = "<string>") -> ReferenceTable:
    """Parse reference table text into a ReferenceTable.

    Args:
        text: Delimited table with a header row
        source: Name used in error messages

    Returns:
        Populated ReferenceTable

    Raises:
        DataLoadError: If the table is empty, has fewer than three columns,
            a row has more fields than the header, or a named row has an
            empty or missing scientific name or venom field
    """
    try:
        # Rows with more fields than the header are rejected, not truncated
        with warnings.catch_warnings():
            warnings.simplefilter("error", pd.errors.ParserWarning)
            df = pd.read_csv(
                io.StringIO(text),
                header=0,
                dtype=str,
                keep_default_na=False,
                index_col=False,
                skip_blank_lines=True,
            )
    except pd.errors.EmptyDataError:
        raise DataLoadError(source, "reference table is empty")
    except (pd.errors.ParserError, pd.errors.ParserWarning) as e:
        raise DataLoadError(source, f"malformed reference table: {e}")

    if df.shape[1] < 3:
        raise DataLoadError(
            source, f"expected at least 3 columns, found {df.shape[1]}")

    has_details = df.shape[1] >= 4
    records = []
    # Row numbers are 1-based and count the header line
    for row_number, row in enumerate(df.itertuples(index=False, name=None), start=2):
        name = _cell(row[0])
        if not name:
            continue
        if not _cell(row[1]) or not _cell(row[2]):
            raise DataLoadError(
                source, f"row {row_number} ('{name}') is missing required fields")
        records.append(ReferenceRecord(
            name=name,
            scientific_name=_cell(row[1]),
            venom_code=_cell(row[2]),
            details=(_cell(row[3]) or None) if has_details else None,
        ))

    table = ReferenceTable(records)
    logger.info("Parsed %d reference records from %s", len(records), source)
    return table


def load_reference_table(path: Union[str, Path]) -> ReferenceTable:
    """Read and parse the reference table file.

    Raises:
        DataLoadError: If the file is missing, unreadable or malformed
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8-sig")
    except FileNotFoundError:
        raise DataLoadError(path, "file not found")
    except (OSError, UnicodeDecodeError) as e:
        raise DataLoadError(path, str(e))
    return parse_reference_table(text, source=str(path))

