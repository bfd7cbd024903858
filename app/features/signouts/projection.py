"""
Regroup per-person sign-out rows into logical events.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from app.core.errors import DataIntegrityError
from app.features.signouts.models import SignoutEntry
from app.utils import get_logger


log = get_logger(__name__)

# Columns every row of one event must agree on
HEADER_FIELDS: Tuple[str, ...] = (
    "signout_id",
    "location",
    "sign_out_time",
    "signed_out_by_id",
    "signed_out_by_name",
    "notes",
    "status",
    "sign_in_time",
    "signed_in_by_id",
    "signed_in_by_name",
)


def format_person_name(rank: Optional[str], first_name: str, last_name: str) -> str:
    if rank:
        return f"{rank} {first_name} {last_name}"
    return f"{first_name} {last_name}"


@dataclass(frozen=True)
class PersonRecord:
    rank: str
    first_name: str
    last_name: str
    dod_id: Optional[str] = None

    @property
    def display_name(self) -> str:
        return format_person_name(self.rank, self.first_name, self.last_name)


@dataclass
class SignoutEvent:
    signout_id: str
    location: str
    sign_out_time: datetime
    signed_out_by_id: str
    signed_out_by_name: str
    notes: str
    status: str
    sign_in_time: Optional[datetime]
    signed_in_by_id: Optional[str]
    signed_in_by_name: Optional[str]
    soldiers: List[PersonRecord] = field(default_factory=list)

    @property
    def soldier_count(self) -> int:
        return len(self.soldiers)

    @property
    def soldier_names(self) -> str:
        return ", ".join(person.display_name for person in self.soldiers)


def _header(row: SignoutEntry) -> Tuple:
    return tuple(getattr(row, name) for name in HEADER_FIELDS)


def group_entries(rows: Iterable[SignoutEntry]) -> List[SignoutEvent]:
    """
    Fold rows into events, keeping the order in which each event first appears.

    Persons keep row order within their event.

    Raises:
        DataIntegrityError: two rows of the same event disagree on a header field
    """
    events: Dict[str, SignoutEvent] = {}
    headers: Dict[str, Tuple] = {}

    for row in rows:
        header = _header(row)
        event = events.get(row.signout_id)
        if event is None:
            event = events[row.signout_id] = SignoutEvent(**dict(zip(HEADER_FIELDS, header)))
            headers[row.signout_id] = header
        elif headers[row.signout_id] != header:
            diverging = [
                name for name, first, current in zip(HEADER_FIELDS, headers[row.signout_id], header)
                if first != current
            ]
            log.error("Sign-out %s has diverging rows on %s", row.signout_id, diverging)
            raise DataIntegrityError(
                f"Sign-out {row.signout_id} has inconsistent rows ({', '.join(diverging)})"
            )

        event.soldiers.append(
            PersonRecord(
                rank=row.soldier_rank or "",
                first_name=row.soldier_first_name,
                last_name=row.soldier_last_name,
                dod_id=row.soldier_dod_id,
            )
        )

    return list(events.values())
