import hashlib
import hmac
import logging
import re
import polars as pl
from pathlib import Path
from typing import Dict, List, Optional, Set, Final
from row_pipeline import read_rows, LIN_URL_COLUMN, DEFAULT_ENCODING

logger = logging.getLogger(__name__)

ANON_KEY_ENV: Final[str] = "BBO_ANON_KEY"
DEFAULT_NAME_COLUMNS: Final[List[str]] = ["N", "S", "E", "W", "Ob name", "Dec name", "Leader"]

FIRST_NAMES: Final[List[str]] = [
    "Ada", "Alba", "Arlo", "Basil", "Bea", "Cato", "Cleo", "Dara", "Dex", "Edda",
    "Elio", "Faye", "Finn", "Gus", "Hana", "Hugo", "Ines", "Ivo", "Jade", "Jules",
    "Kai", "Kira", "Lars", "Lena", "Milo", "Mira", "Nell", "Nico", "Oona", "Otto",
    "Pia", "Quin", "Rafe", "Rosa", "Sami", "Tess", "Theo", "Uma", "Vera", "Wren",
]
SURNAMES: Final[List[str]] = [
    "Alder", "Ashby", "Birch", "Brook", "Carver", "Cobb", "Dale", "Drake", "Ellis", "Fenn",
    "Frost", "Garner", "Gale", "Hale", "Heath", "Irwin", "Keel", "Lark", "Lowe", "Marsh",
    "Moss", "North", "Oakes", "Pike", "Quill", "Reed", "Rowe", "Sage", "Shaw", "Stone",
    "Thorne", "Vale", "Wade", "Ward", "West", "Whit", "Wilde", "Wood", "Yates", "York",
]

# Player list inside a LIN_URL, either percent-encoded (pn%7Ca%2Cb%7C) or literal (pn|a,b|)
_ENCODED_PLAYERS = re.compile(r"(pn%7C)(.*?)(%7C)", re.IGNORECASE)
_ENCODED_COMMA = re.compile(r"%2C", re.IGNORECASE)
_PLAIN_PLAYERS = re.compile(r"(pn\|)([^|]*)(\|)")

class Anonymizer:
    """
    Replaces BBO usernames with stable made-up names. A keyed hash picks the name, so the same
    key always maps a user to the same name, and without the key the mapping cannot be rebuilt
    from a list of likely usernames. Usernames are matched case-insensitively.
    """

    def __init__(self, key: str, explicit: Optional[Dict[str, str]] = None):
        """
        :param key: Secret for the keyed hash
        :param explicit: username -> replacement pairs that bypass the hash
        """
        if not key:
            raise ValueError(f"An anonymization key is required: set {ANON_KEY_ENV} or pass --key")
        self._key = key.encode("utf-8")
        self._explicit = {old.strip().lower(): new for old, new in (explicit or {}).items()}
        self._generated: Dict[str, str] = {}
        self._used: Set[str] = set(self._explicit.values())

    @staticmethod
    def parse_mapping(text: Optional[str]) -> Dict[str, str]:
        """ "alice=Pro_One,bob=Pro_Two" -> {"alice": "Pro_One", "bob": "Pro_Two"} """
        mapping: Dict[str, str] = {}
        for pair in filter(None, (p.strip() for p in (text or "").split(","))):
            old, sep, new = pair.partition("=")
            if not sep or not old.strip() or not new.strip():
                raise ValueError(f"Bad name mapping '{pair}', expected old=New")
            mapping[old.strip().lower()] = new.strip()
        return mapping

    @property
    def explicit_count(self) -> int:
        return len(self._explicit)

    @property
    def generated_count(self) -> int:
        return len(self._generated)

    def name_for(self, username: str) -> str:
        lookup = username.strip().lower()
        if not lookup:
            return username
        if lookup in self._explicit:
            return self._explicit[lookup]
        if lookup not in self._generated:
            self._generated[lookup] = self._generate(lookup)
        return self._generated[lookup]

    def _generate(self, lookup: str) -> str:
        digest = hmac.new(self._key, lookup.encode("utf-8"), hashlib.sha256).digest()
        h = int.from_bytes(digest[:8], "big")
        base = f"{FIRST_NAMES[h % len(FIRST_NAMES)]}_{SURNAMES[(h // len(FIRST_NAMES)) % len(SURNAMES)]}"
        name, suffix = base, 2
        while name in self._used:
            name = f"{base}_{suffix}"
            suffix += 1
        self._used.add(name)
        return name

    def anonymize_lin_url(self, url: str) -> str:
        """Rename the players in a hand viewer URL's pn| segment, leaving the rest untouched"""
        def encoded(m: re.Match) -> str:
            names = _ENCODED_COMMA.split(m.group(2))
            return m.group(1) + "%2C".join(self.name_for(n) for n in names) + m.group(3)

        def plain(m: re.Match) -> str:
            return m.group(1) + ",".join(self.name_for(n) for n in m.group(2).split(",")) + m.group(3)

        return _PLAIN_PLAYERS.sub(plain, _ENCODED_PLAYERS.sub(encoded, url))

def anonymize_csv(input_path: Path, output_path: Path, anonymizer: Anonymizer,
                  columns: Optional[List[str]] = None, repair_quotes: bool = False,
                  encoding: str = DEFAULT_ENCODING) -> int:
    """
    Copy a CSV, renaming players in the name columns and in LIN_URL.
    Rows are visited in order so that name collisions resolve the same way on every run.
    :param columns: Name columns to rewrite; those missing from the file are ignored
    :param repair_quotes: The input is a raw BBO export rather than a file written by this package
    :return: Number of rows written
    """
    if input_path.resolve() == output_path.resolve():
        raise ValueError("Output must not overwrite the input")
    columns = DEFAULT_NAME_COLUMNS if columns is None else columns
    df = read_rows(input_path, repair_quotes=repair_quotes, encoding=encoding)
    present = [c for c in columns if c in df.columns]
    has_lin = LIN_URL_COLUMN in df.columns
    if not present and not has_lin:
        raise ValueError(f"None of the name columns {columns} or {LIN_URL_COLUMN} are in {input_path.name}")
    logger.info(f"Anonymizing columns {present}{' and ' + LIN_URL_COLUMN if has_lin else ''}")

    rows = []
    for row in df.iter_rows(named=True):
        for c in present:
            if row[c]:
                row[c] = anonymizer.name_for(row[c])
        if has_lin and row[LIN_URL_COLUMN]:
            row[LIN_URL_COLUMN] = anonymizer.anonymize_lin_url(row[LIN_URL_COLUMN])
        rows.append(row)
    pl.DataFrame(rows, schema=df.schema).write_csv(output_path)
    logger.warning(f"Anonymized {len(rows)} rows: {anonymizer.explicit_count} explicit and "
                   f"{anonymizer.generated_count} generated names")
    return len(rows)
