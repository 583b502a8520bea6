"""
Data Loader Module for csvbuttler

This module turns a CSV source into the in-memory index served by the API.

INGESTION PIPELINE (runs once, synchronously, before the server binds):
1. fetch_csv   : read a local file, or GET a remote URL (optional Basic Auth)
2. index_csv   : parse rows into Record objects keyed by id
3. SharedState : hold settings + index behind a lock for concurrent reads

ROW POLICY:
- A row that cannot be parsed is logged and replaced by the sentinel
  record (id 0); sentinel rows are never indexed
- Rows with id 0 in the source are dropped the same way
- Duplicate ids: the last occurrence wins
"""

import csv
import io
import logging
import re
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit

import requests

from .config import Settings
from .errors import ConfigurationError, FetchError, RowParseError, SourceIOError
from .models import RECORD_FIELDS, Record, sentinel_record

logger = logging.getLogger(__name__)

_REMOTE_SCHEMES = {"http", "https"}
_ID_PATTERN = re.compile(r"[0-9]+")


# =============================================================================
# FETCHING
# =============================================================================

def is_remote(uri: str) -> bool:
    """
    True when the locator is an http(s) URL.

    Any other scheme (ftp://, file:// ...) is not remote and is read as a
    local path.
    """
    return urlsplit(uri).scheme.lower() in _REMOTE_SCHEMES


def fetch_csv(
    uri: str,
    username: Optional[str] = None,
    password: Optional[str] = None,
    timeout: float = 30.0,
) -> str:
    """
    Retrieve raw CSV text from a local path or a remote URL.

    Args:
        uri: http(s) URL, or a local file path. Locators with any other
            scheme are treated as local paths and fail with SourceIOError
            if no such file exists
        username: Optional Basic Auth user for remote sources
        password: Basic Auth password, required when username is set
        timeout: Socket timeout in seconds for remote sources

    Returns:
        The CSV contents decoded as UTF-8

    Raises:
        ConfigurationError: username configured without a password
        SourceIOError: local file missing, unreadable or not UTF-8
        FetchError: network failure, non-2xx status or non-UTF-8 body
    """
    # Validated before anything else so no entry point can reach the network
    if username and not password:
        raise ConfigurationError("Basic Auth requires a password")

    logger.info(f"Fetching data from {uri}")

    if not is_remote(uri):
        try:
            return Path(uri).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise SourceIOError(f"Cannot read CSV file {uri}: {exc}") from exc

    auth: Optional[Tuple[str, str]] = (username, password) if username else None

    try:
        response = requests.get(uri, auth=auth, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise FetchError(f"Failed to fetch {uri}: {exc}") from exc

    try:
        return response.content.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FetchError(f"Response from {uri} is not valid UTF-8") from exc


# =============================================================================
# INDEXING
# =============================================================================

def _validate_delimiter(delimiter: str) -> None:
    if not delimiter:
        raise ConfigurationError("CSV delimiter must not be empty")
    if len(delimiter) != 1:
        raise ConfigurationError(
            f"CSV delimiter must be a single character, got {delimiter!r}"
        )


def _header_columns(row: Sequence[str]) -> Optional[Tuple[str, ...]]:
    """
    Return the column names if the row is a header naming every record field.

    Extra columns are allowed; _parse_row picks the record fields by name.
    """
    names = tuple(cell.strip().lower() for cell in row)
    if set(RECORD_FIELDS).issubset(names):
        return names
    return None


def _parse_row(row: List[str], columns: Tuple[str, ...], line: int) -> Record:
    """
    Turn one CSV row into a Record.

    Raises:
        RowParseError: wrong column count or invalid id
    """
    if len(row) != len(columns):
        raise RowParseError(line, f"expected {len(columns)} fields, found {len(row)}")

    values = dict(zip(columns, row))
    raw_id = values["id"].strip()

    if not _ID_PATTERN.fullmatch(raw_id):
        raise RowParseError(line, f"invalid id {raw_id!r}")

    return Record(
        id=int(raw_id),
        title=values["title"],
        description=values["description"] or None,
        brand=values["brand"],
        price=values["price"],
    )


def index_csv(text: str, delimiter: str) -> Dict[int, Record]:
    """
    Parse CSV text into a mapping from id to Record.

    A first row naming all five record fields is treated as a header: the
    fields are then selected by name and any other columns are ignored.
    Otherwise columns are positional (id, title, description, brand, price).
    A leading UTF-8 byte order mark is dropped.

    Args:
        text: Raw CSV contents
        delimiter: Single field delimiter character

    Returns:
        Dict with exactly one Record per distinct nonzero id

    Raises:
        ConfigurationError: If the delimiter is empty or longer than one character
    """
    _validate_delimiter(delimiter)

    if text.startswith("\ufeff"):
        text = text[1:]

    reader = csv.reader(io.StringIO(text), delimiter=delimiter)
    columns: Tuple[str, ...] = RECORD_FIELDS
    records: Dict[int, Record] = {}
    skipped = 0
    first_row = True

    while True:
        try:
            row = next(reader)
        except StopIteration:
            break
        except csv.Error as exc:
            logger.warning(f"Skipping unreadable CSV line {reader.line_num}: {exc}")
            skipped += 1
            continue

        if not row:
            continue

        if first_row:
            first_row = False
            header = _header_columns(row)
            if header is not None:
                columns = header
                continue

        try:
            record = _parse_row(row, columns, reader.line_num)
        except RowParseError as exc:
            logger.warning(f"Skipping malformed CSV row: {exc}")
            record = sentinel_record()

        if record.id == 0:
            skipped += 1
            continue

        records[record.id] = record

    logger.info(f"Indexed {len(records)} records ({skipped} rows skipped)")
    return records


# =============================================================================
# SHARED STATE
# =============================================================================

class SharedState:
    """
    Process-wide container for the settings and the record index.

    Built exactly once at startup with SharedState.build(). The index is
    never mutated afterwards, but every read still goes through the lock so
    an in-place refresh can be added without changing callers.
    """

    def __init__(self, settings: Settings, records: Dict[int, Record]):
        self._settings = settings
        self._records: Dict[int, Record] = dict(records)
        self._lock = threading.Lock()

    @classmethod
    def build(cls, settings: Settings) -> "SharedState":
        """
        Fetch and index the configured CSV source.

        Any fetch or index error propagates; no partially built state is
        ever returned.
        """
        source = settings.csv
        text = fetch_csv(
            source.uri,
            username=source.username,
            password=source.password,
            timeout=source.timeout,
        )
        records = index_csv(text, source.delimiter)
        return cls(settings, records)

    @property
    def settings(self) -> Settings:
        return self._settings

    def lookup(self, record_id: int) -> Optional[Record]:
        """Return the record for an id, or None. Holds the lock for the read only."""
        with self._lock:
            return self._records.get(record_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
