import csv
import datetime
import io
from typing import List, Optional, Sequence, Tuple

from blindbox.sync.model import Snapshot

BOM = '\ufeff'
DEFAULT_HEADERS = ('symbol', 'claimant')


def assignment_rows(snapshot: Snapshot) -> List[Tuple[str, str]]:
    """(symbol, claimant) for every claimed entry, ascending by symbol."""
    assignments = snapshot.session.assignments
    rows = [(entry.symbol, assignments[entry.id]) for entry in snapshot.catalog if entry.id in assignments]
    return sorted(rows, key=lambda row: row[0])


def export_csv(snapshot: Snapshot, headers: Sequence[str] = DEFAULT_HEADERS) -> str:
    """Results sheet as text prefixed with a UTF-8 byte-order mark.

    The BOM makes spreadsheet tools render non-ASCII claimant names correctly.
    """
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator='\n')
    writer.writerow(headers)
    writer.writerows(assignment_rows(snapshot))
    return BOM + buf.getvalue()


def export_filename(day: Optional[datetime.date] = None) -> str:
    day = day or datetime.date.today()
    return f"results_{day.isoformat()}.csv"
