import csv
import io
import logging
import random
from abc import ABC, abstractmethod
from typing import Iterable, List

import requests

from blindbox.sync.model import CatalogEntry

logger = logging.getLogger(__name__)


def parse_catalog_csv(text: str) -> List[CatalogEntry]:
    """Parse ``symbol,name,category,hint`` rows, skipping the header row.

    Blank lines and rows with fewer than four columns are ignored.
    """
    entries: List[CatalogEntry] = []
    rows = csv.reader(io.StringIO(text))
    next(rows, None)
    for row in rows:
        if len(row) < 4:
            continue
        symbol = row[0].strip()
        if not symbol:
            continue
        entries.append(CatalogEntry(
            id=symbol,
            name=row[1].strip(),
            category=row[2].strip(),
            hint=row[3].strip(),
        ))
    return entries


class CatalogSource(ABC):
    @abstractmethod
    def fetch(self) -> List[CatalogEntry]:
        """Shuffled catalog entries, or an empty list when none can be had."""


class StaticCatalogSource(CatalogSource):
    """Serves a fixed list, shuffled on every fetch unless ``shuffle`` is off."""

    def __init__(self, entries: Iterable[CatalogEntry], shuffle: bool = True, rng=None):
        self._entries = list(entries)
        self._shuffle = shuffle
        self._rng = rng or random.Random()

    def fetch(self) -> List[CatalogEntry]:
        entries = list(self._entries)
        if self._shuffle:
            self._rng.shuffle(entries)
        return entries


class CsvCatalogSource(CatalogSource):
    """Downloads the catalog sheet as CSV and shuffles it.

    Any failure (unreachable URL, bad status, undecodable body) is logged and
    answered with an empty catalog.
    """

    def __init__(self, url: str, timeout: float = 5.0, session=None, rng=None):
        self.url = url
        self.timeout = timeout
        self._http = session or requests.Session()
        self._rng = rng or random.Random()

    def fetch(self) -> List[CatalogEntry]:
        if not self.url:
            logger.warning("[catalog] no CATALOG_URL configured")
            return []
        try:
            res = self._http.get(self.url, timeout=self.timeout)
            res.raise_for_status()
            res.encoding = res.encoding or 'utf-8'
            entries = parse_catalog_csv(res.text)
        except (requests.RequestException, csv.Error) as exc:
            logger.error(f"[catalog] fetch failed url={self.url}: {exc}")
            return []
        self._rng.shuffle(entries)
        logger.info(f"[catalog] loaded entries={len(entries)}")
        return entries
