"""
Pinyin resolution for single characters.

Order of precedence:
- Override table (polyphonic.json): glyph -> explicit list of syllables, returned verbatim.
  Used for characters where automatic tools pick the wrong reading.
- Generated pinyin (pypinyin, tone marks): only the first valid candidate is kept.
  Polyphonic characters outside the override table get a single reading.
"""
import json
import logging
import re
import threading
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Union

from pypinyin import Style, pinyin

logger = logging.getLogger(__name__)

# Letters plus the tone-marked vowels; anything else (untranslated hanzi, punctuation) is rejected.
VALID_PINYIN_RE = re.compile(r"^[a-zǖǘǚǜüīíǐìāáǎàēéěèōóǒòūúǔù]+$", re.IGNORECASE)

Romanizer = Callable[[str], List[str]]


def romanize(character: str) -> List[str]:
    """All pypinyin candidates for one character, tone-mark notation."""
    readings = pinyin(character, style=Style.TONE, heteronym=True)
    return [r for group in readings for r in group]


def is_valid_syllable(candidate: str) -> bool:
    return isinstance(candidate, str) and bool(VALID_PINYIN_RE.match(candidate))


class OverrideTable:
    """
    Glyph -> syllables mapping, read from a JSON file on first use.

    The file is loaded at most once per instance; a missing or malformed file
    yields an empty table (logged), never an exception.
    """

    def __init__(self, path: Union[str, Path, None] = None, data: Optional[Mapping[str, List[str]]] = None):
        self._path = Path(path) if path is not None else None
        self._data: Optional[Dict[str, List[str]]] = dict(data) if data is not None else None
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._data is not None

    def _read(self) -> Dict[str, List[str]]:
        if self._path is None:
            return {}
        try:
            with open(self._path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
        except FileNotFoundError:
            logger.warning("Pinyin override file not found at %s; using empty table", self._path)
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Failed to load pinyin override file %s: %s; using empty table", self._path, e)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Pinyin override file %s is not a JSON object; using empty table", self._path)
            return {}
        table = {}
        for ch, readings in raw.items():
            if isinstance(readings, list) and all(isinstance(r, str) for r in readings):
                table[ch] = list(readings)
            else:
                logger.warning("Skipping malformed pinyin override for %r: %r", ch, readings)
        logger.info("Loaded %d pinyin overrides from %s", len(table), self._path)
        return table

    def load(self) -> Dict[str, List[str]]:
        if self._data is None:
            with self._lock:
                if self._data is None:
                    self._data = self._read()
        return self._data

    def get(self, character: str) -> Optional[List[str]]:
        readings = self.load().get(character)
        return list(readings) if readings is not None else None

    def __len__(self):
        return len(self.load())


class PinyinResolver:
    """Resolve one glyph to an ordered list of pinyin syllables. Never raises."""

    def __init__(self, overrides: Optional[OverrideTable] = None, backend: Optional[Romanizer] = None):
        self.overrides = overrides if overrides is not None else OverrideTable()
        self._backend = backend or romanize

    def resolve(self, character: str) -> List[str]:
        """Pinyin for one character. Input is not stripped, so " 你" gives []."""
        if not isinstance(character, str) or len(character) != 1:
            return []

        custom = self.overrides.get(character)
        if custom is not None:
            return custom

        try:
            candidates = self._backend(character) or []
        except Exception as e:
            logger.warning("Pinyin backend failed for %r: %s", character, e)
            return []

        for candidate in candidates:
            if is_valid_syllable(candidate):
                return [candidate]
        return []
