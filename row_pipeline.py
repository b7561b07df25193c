import re
import time
import logging
import polars as pl
from enum import Enum
from pathlib import Path
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, BinaryIO, Final
from common_objects import BridgeDataError, ResolutionFailed, AnalysisUnavailable
from lin_parse import parse_lin, format_cardplay
from link_resolver import LinkResolver, extract_payload
from fetch_scheduler import FetchConfig, FetchScheduler
from play_cost import analyze_play, format_costs

logger = logging.getLogger(__name__)

ERROR_MARKER: Final[str] = "ERROR:"
DEFAULT_KEY_COLUMN: Final[str] = "Ref #"
DEFAULT_URL_COLUMN: Final[str] = "BBO"
CARDPLAY_COLUMN: Final[str] = "Cardplay"
LIN_URL_COLUMN: Final[str] = "LIN_URL"
DD_COLUMN: Final[str] = "DD_Analysis"
PROGRESS_INTERVAL: Final[int] = 100
DEFAULT_ENCODING: Final[str] = "utf-8-sig"
_LONE_QUOTE = re.compile(r'(?<!")"(?!")')

Row = Dict[str, Optional[str]]
RowProcessor = Callable[[Row], Dict[str, Optional[str]]]

class RowState(Enum):
    """Terminal state of a row; each row is written exactly once whichever it ends in"""
    FETCH_FAILED = "fetch_failed"
    PARSE_FAILED = "parse_failed"
    WRITTEN = "written"
    RESUMED = "resumed"

@dataclass
class PipelineSummary:
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.succeeded + self.failed + self.skipped

    def __str__(self) -> str:
        return f"{self.total} rows: {self.succeeded} succeeded, {self.failed} failed, {self.skipped} skipped (resumed)"

def fix_bbo_csv_line(line: str) -> str:
    """
    BBO wraps the last field (alerts) in quotes without escaping quotes inside it, e.g.
    ...,"2N=Ogust+see+partner"s+response". Turn the inner quotes into apostrophes.
    """
    stripped = line.rstrip()
    if not stripped.endswith('"'):
        return line
    start = stripped.rfind(',"')
    if start < 0:
        return line
    inner = stripped[start + 2:-1]
    fixed = _LONE_QUOTE.sub("'", inner)   # Properly escaped "" pairs are left alone
    if fixed == inner:
        return line
    return f'{stripped[:start + 1]}"{fixed}"'

def read_rows(path: Path, repair_quotes: bool = False, encoding: str = DEFAULT_ENCODING) -> pl.DataFrame:
    """
    Read a CSV with every column as a string.
    :param repair_quotes: Run fix_bbo_csv_line over each line. Only for raw BBO exports; files written
     by this package are already escaped correctly and the repair can corrupt them.
    :param encoding: Text encoding of the file. Bytes that do not decode are an error, not replaced.
    """
    try:
        with open(path, "r", encoding=encoding) as f:
            lines = [line.rstrip("\r\n") for line in f]
    except UnicodeDecodeError as e:
        raise ValueError(f"{path} is not valid {encoding}: {e}") from e
    if repair_quotes:
        lines = [fix_bbo_csv_line(line) for line in lines]
    text = "".join(line + "\n" for line in lines)
    return pl.read_csv(text.encode("utf-8"), infer_schema_length=0, truncate_ragged_lines=True)

def _is_completed(col_name: str) -> pl.Expr:
    return pl.col(col_name).is_not_null() & (pl.col(col_name).str.strip_chars() != "") & \
        ~pl.col(col_name).str.starts_with(ERROR_MARKER)

def is_completed(value: Optional[str]) -> bool:
    return bool(value) and value.strip() != "" and not value.startswith(ERROR_MARKER)

def load_completed(path: Path, key_column: str, target_column: str,
                   derived_columns: List[str]) -> Dict[str, Row]:
    """
    :return: key -> derived column values, for rows of an earlier output whose target is filled in
    """
    if not path.exists() or path.stat().st_size == 0:
        return {}
    df = read_rows(path)
    if key_column not in df.columns or target_column not in df.columns:
        logger.warning(f"{path} lacks '{key_column}' or '{target_column}', nothing to resume from")
        return {}
    present = [c for c in derived_columns if c in df.columns]
    done = df.filter(_is_completed(target_column) & pl.col(key_column).is_not_null()).select([key_column] + present)
    return {row[key_column]: {c: row[c] for c in present} for row in done.iter_rows(named=True)}

def _write_row(out: BinaryIO, columns: List[str], values: List[Optional[str]]) -> None:
    pl.DataFrame([values], schema={c: pl.String for c in columns}, orient="row").write_csv(out, include_header=False)
    out.flush()

def _write_header(out: BinaryIO, columns: List[str]) -> None:
    pl.DataFrame(schema={c: pl.String for c in columns}).write_csv(out, include_header=True)
    out.flush()

class ResumeJournal:
    """
    Append-only key -> derived values log kept next to the output while a run is in progress.
    It survives an interrupted rewrite of the output and is removed after a clean finish.
    """

    def __init__(self, output_path: Path, key_column: str, target_column: str, derived_columns: List[str]):
        self.path = output_path.with_name(output_path.name + ".journal.csv")
        self.key_column = key_column
        self.target_column = target_column
        self.columns = [key_column] + derived_columns
        self._out: Optional[BinaryIO] = None

    def load(self) -> Dict[str, Row]:
        return load_completed(self.path, self.key_column, self.target_column, self.columns[1:])

    def start(self, completed: Dict[str, Row]) -> None:
        self._out = open(self.path, "wb")
        _write_header(self._out, self.columns)
        for key, values in completed.items():
            self.record(key, values)

    def record(self, key: str, values: Row) -> None:
        _write_row(self._out, self.columns, [key] + [values.get(c) for c in self.columns[1:]])

    def close(self, finished: bool) -> None:
        if self._out is not None:
            self._out.close()
            self._out = None
        if finished:
            self.path.unlink(missing_ok=True)

def _process(row: Row, index: int, key: str, process_row: RowProcessor, target_column: str,
             derived_columns: List[str]) -> tuple[RowState, Row]:
    try:
        values = process_row(row)
    except ResolutionFailed as e:
        state, error = RowState.FETCH_FAILED, e
    except BridgeDataError as e:
        state, error = RowState.PARSE_FAILED, e
    else:
        return RowState.WRITTEN, {c: (values.get(c) or None) for c in derived_columns}
    logger.warning(f"Row {index + 1} ({key}): {state.value}: {error}")
    failed: Row = {c: None for c in derived_columns}
    failed[target_column] = f"{ERROR_MARKER} {error}"
    return state, failed

def run_pipeline(input_path: Path, output_path: Path, key_column: str, target_column: str,
                 derived_columns: List[str], process_row: RowProcessor, resume: bool = False,
                 required_columns: Optional[List[str]] = None, repair_quotes: bool = False,
                 encoding: str = DEFAULT_ENCODING) -> PipelineSummary:
    """
    Copy input to output row by row, filling in the derived columns.
    :param key_column: Stable row identifier used to match rows against an earlier run
    :param target_column: The derived column whose presence marks a row as done
    :param process_row: Computes the derived values for one row; raises BridgeDataError on row failure
    :param resume: Reuse values from an earlier output (and its journal) instead of recomputing them
    :param repair_quotes: The input is a raw BBO export whose quoting needs repair
    :param encoding: Encoding of the input; outputs and journals are always UTF-8
    """
    if target_column not in derived_columns:
        raise ValueError(f"{target_column} must be one of the derived columns {derived_columns}")
    if input_path.resolve() == output_path.resolve():
        raise ValueError("Output must not overwrite the input")
    rows_df = read_rows(input_path, repair_quotes=repair_quotes, encoding=encoding)
    missing = {key_column, *(required_columns or [])} - set(rows_df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {missing}")

    journal = ResumeJournal(output_path, key_column, target_column, derived_columns)
    completed: Dict[str, Row] = {}
    if resume:
        completed.update(load_completed(output_path, key_column, target_column, derived_columns))
        completed.update(journal.load())
        logger.warning(f"Resuming: {len(completed)} rows already have {target_column}")

    columns = rows_df.columns + [c for c in derived_columns if c not in rows_df.columns]
    summary = PipelineSummary()
    total = rows_df.height
    finished = False
    journal.start(completed)
    try:
        with open(output_path, "wb") as out:
            _write_header(out, columns)
            for index, row in enumerate(rows_df.iter_rows(named=True)):
                key = row[key_column] or ""
                if key and key in completed:
                    state, values = RowState.RESUMED, completed[key]
                elif is_completed(row.get(target_column)):
                    state, values = RowState.RESUMED, {c: row.get(c) for c in derived_columns}
                else:
                    state, values = _process(row, index, key, process_row, target_column, derived_columns)

                merged = dict(row)
                merged.update(values)
                _write_row(out, columns, [merged.get(c) for c in columns])

                if state == RowState.RESUMED:
                    summary.skipped += 1
                elif state == RowState.WRITTEN:
                    summary.succeeded += 1
                    if key:
                        journal.record(key, values)
                else:
                    summary.failed += 1
                if (index + 1) % PROGRESS_INTERVAL == 0:
                    logger.info(f"[{index + 1}/{total}] {summary}")
        finished = True
    finally:
        journal.close(finished)
    logger.warning(f"Done {output_path.name}: {summary}")
    return summary

def fetch_cardplay(input_path: Path, output_path: Path, config: FetchConfig,
                   url_column: str = DEFAULT_URL_COLUMN, key_column: str = DEFAULT_KEY_COLUMN,
                   resolver: Optional[LinkResolver] = None,
                   sleep: Callable[[float], None] = time.sleep,
                   encoding: str = DEFAULT_ENCODING) -> PipelineSummary:
    """Pass 1: resolve each row's link and add Cardplay and LIN_URL columns"""
    scheduler = FetchScheduler(resolver if resolver is not None else LinkResolver(), config, sleep)

    def process_row(row: Row) -> Row:
        url = (row.get(url_column) or "").strip()
        if not url:
            raise ResolutionFailed(f"No URL in column '{url_column}'")
        payload = extract_payload(url)
        final_url = url
        if payload is None:
            outcome = scheduler.fetch(url)
            if not outcome.ok:
                raise outcome.error
            final_url, payload = outcome.final_url, outcome.payload
        record = parse_lin(payload)
        return {CARDPLAY_COLUMN: format_cardplay(record), LIN_URL_COLUMN: final_url}

    return run_pipeline(input_path, output_path, key_column, CARDPLAY_COLUMN,
                        [CARDPLAY_COLUMN, LIN_URL_COLUMN], process_row, resume=config.resume,
                        required_columns=[url_column], repair_quotes=True, encoding=encoding)

def analyze_dd(input_path: Path, output_path: Path, solver, resume: bool = False,
               key_column: str = DEFAULT_KEY_COLUMN, encoding: str = DEFAULT_ENCODING) -> PipelineSummary:
    """Pass 2: re-parse each row's LIN_URL and add the per-card DD cost column"""

    def process_row(row: Row) -> Row:
        if not is_completed(row.get(CARDPLAY_COLUMN)):
            raise AnalysisUnavailable("No cardplay in row")
        payload = extract_payload(row.get(LIN_URL_COLUMN) or "")
        if payload is None:
            raise AnalysisUnavailable(f"No LIN payload in {LIN_URL_COLUMN}")
        record = parse_lin(payload)
        return {DD_COLUMN: format_costs(analyze_play(record, solver))}

    return run_pipeline(input_path, output_path, key_column, DD_COLUMN, [DD_COLUMN], process_row,
                        resume=resume, required_columns=[CARDPLAY_COLUMN, LIN_URL_COLUMN], encoding=encoding)
