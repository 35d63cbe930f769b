"""
Historical outcome corpus loading.

A corpus reference is either a name registered in memory or a path to a
JSON, JSON-lines or CSV file. Files are read with pandas; CSV corpora put
section text in `section_<name>` columns.
"""

import os
import logging
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from grant_engine.core.domain_models import ApplicationOutcome
from grant_engine.core.errors import GrantEngineError, InvalidInput
from grant_engine.core.utils import fingerprint

logger = logging.getLogger(__name__)

SECTION_PREFIX = "section_"
SUPPORTED_SUFFIXES = (".json", ".jsonl", ".ndjson", ".csv")


def _clean(value: Any) -> Any:
    """pandas fills gaps with NaN/NaT; the models expect None."""
    if value is None:
        return None
    if isinstance(value, float) and np.isnan(value):
        return None
    if value is pd.NaT:
        return None
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    return value


def _read_frame(path: Path) -> pd.DataFrame:
    suffix = path.suffix.lower()
    if suffix == ".csv":
        return pd.read_csv(path, dtype=str, keep_default_na=False, na_values=[""])
    lines = suffix in (".jsonl", ".ndjson")
    return pd.read_json(path, orient="records", lines=lines, dtype=False, convert_dates=False)


def records_from_frame(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """Convert a corpus DataFrame to plain records, folding section_* columns."""
    section_cols = [c for c in df.columns if str(c).startswith(SECTION_PREFIX)]
    records = []
    for row in df.to_dict(orient="records"):
        record = {str(k): _clean(v) for k, v in row.items() if k not in section_cols}
        if section_cols:
            sections = dict(record.get("sections") or {})
            for col in section_cols:
                text = _clean(row[col])
                if text:
                    sections[col[len(SECTION_PREFIX):]] = str(text)
            record["sections"] = sections
        records.append(record)
    return records


def parse_outcomes(records: Sequence[Dict[str, Any]], source: str = "corpus") -> List[ApplicationOutcome]:
    """
    Raises:
        InvalidInput: a record is malformed (the message names the row)
    """
    outcomes = []
    for index, record in enumerate(records):
        if not isinstance(record, dict):
            raise InvalidInput(f"{source} row {index}: expected an object", field="corpusReference")
        try:
            outcomes.append(ApplicationOutcome.from_dict(record))
        except GrantEngineError as e:
            raise InvalidInput(f"{source} row {index}: {e.reason}", field=e.field or "corpusReference")
    return outcomes


def load_corpus_file(path: str) -> List[ApplicationOutcome]:
    """
    Load a corpus file.

    Raises:
        InvalidInput: missing file, unsupported format or malformed rows
    """
    file_path = Path(path)
    if not file_path.is_file():
        raise InvalidInput(f"corpus file not found: {path}", field="corpusReference")
    if file_path.suffix.lower() not in SUPPORTED_SUFFIXES:
        raise InvalidInput(
            f"unsupported corpus format {file_path.suffix!r}; expected one of {', '.join(SUPPORTED_SUFFIXES)}",
            field="corpusReference",
        )

    try:
        df = _read_frame(file_path)
    except (ValueError, OSError) as e:
        raise InvalidInput(f"cannot read corpus {path}: {e}", field="corpusReference")

    outcomes = parse_outcomes(records_from_frame(df), source=file_path.name)
    logger.info(f"Loaded {len(outcomes)} outcomes from {file_path.name}")
    return outcomes


def corpus_fingerprint(outcomes: Sequence[ApplicationOutcome]) -> str:
    return fingerprint("corpus", [asdict(o) for o in outcomes])


class CorpusRegistry:
    """
    Resolves corpus references to outcome lists.

    File corpora are cached until the file's modification time changes.

    Usage:
        registry = CorpusRegistry()
        registry.register("history-2024", outcomes)
        outcomes, corpus_id = registry.resolve("history-2024")
        outcomes, corpus_id = registry.resolve("data/outcomes.csv")
    """

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir) if base_dir else None
        self._named: Dict[str, Tuple[List[ApplicationOutcome], str]] = {}
        self._files: Dict[str, Tuple[float, List[ApplicationOutcome], str]] = {}
        self._lock = threading.Lock()

    def register(self, name: str, outcomes: Sequence[ApplicationOutcome]) -> str:
        """Register an in-memory corpus. Returns its fingerprint."""
        outcomes = list(outcomes)
        corpus_id = corpus_fingerprint(outcomes)
        with self._lock:
            self._named[name] = (outcomes, corpus_id)
        logger.debug(f"Registered corpus '{name}' ({len(outcomes)} outcomes)")
        return corpus_id

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._named)

    def _path(self, reference: str) -> Path:
        path = Path(reference)
        if not path.is_absolute() and self.base_dir is not None:
            path = self.base_dir / path
        return path

    def resolve(self, reference: str) -> Tuple[List[ApplicationOutcome], str]:
        """
        Returns:
            (outcomes, corpus fingerprint)

        Raises:
            InvalidInput: unknown reference or unreadable file
        """
        if not isinstance(reference, str) or not reference.strip():
            raise InvalidInput("corpus reference is required", field="corpusReference")

        with self._lock:
            named = self._named.get(reference)
        if named is not None:
            return named

        path = self._path(reference)
        if not path.is_file():
            raise InvalidInput(f"unknown corpus {reference!r}", field="corpusReference")

        key = str(path.resolve())
        mtime = os.path.getmtime(path)
        with self._lock:
            cached = self._files.get(key)
        if cached is not None and cached[0] == mtime:
            return cached[1], cached[2]

        outcomes = load_corpus_file(str(path))
        corpus_id = corpus_fingerprint(outcomes)
        with self._lock:
            self._files[key] = (mtime, outcomes, corpus_id)
        return outcomes, corpus_id
