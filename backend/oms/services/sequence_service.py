# Overview: Service-layer operations for identifier sequences; allocates order and invoice numbers.

"""
Sequence Allocator - collision-free human-readable identifiers

FORMATS:
- Order number:   ORD-YYYYMMDD-NNN         (bucket: calendar day)
- Invoice number: PREFIX/ROMAN-MONTH/YY/NNNN (bucket: calendar month of the invoice date)

LOCKING: Allocation is a locking read of the bucket's SequenceBucket row,
increment, write. The lock is held until the caller's transaction ends, so two
allocations in the same bucket serialize; different buckets never contend.
A missing bucket row is created with a conflict-ignoring INSERT before the
locking read, so the first allocations of a new bucket queue up as well.
Nothing here commits or rolls back.

GAPS: A rolled-back transaction discards its tentative number. Gaps are
acceptable, duplicates are not.

SEEDING: The first allocation in a bucket starts from the highest existing
identifier matching the bucket pattern, so numbers issued outside this table
(imports, backfills) are continued instead of reissued.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Callable, Iterable, Optional

from flask import current_app
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, SequenceBucket
from ..validation import ConflictError
from .concurrency import lock_for_update


ORDER_SEQUENCE = "ORDER"
INVOICE_SEQUENCE = "INVOICE"

ROMAN_MONTHS = ("I", "II", "III", "IV", "V", "VI", "VII", "VIII", "IX", "X", "XI", "XII")


class SequenceError(Exception):
    """Raised for malformed identifiers and allocation failures."""


class SequenceConflictError(SequenceError, ConflictError):
    """Two transactions raced to create the same bucket; the caller may resubmit."""


@dataclass(frozen=True)
class InvoiceNumber:
    prefix: str
    month: int
    year: int
    sequence: int

    @property
    def roman_month(self) -> str:
        return ROMAN_MONTHS[self.month - 1]


def month_to_roman(month: int) -> str:
    if not 1 <= month <= 12:
        raise SequenceError(f"Invalid month: {month}")
    return ROMAN_MONTHS[month - 1]


def roman_to_month(value: str) -> int:
    try:
        return ROMAN_MONTHS.index(value) + 1
    except ValueError:
        raise SequenceError(f"Invalid roman month: {value!r}")


def format_order_number(prefix: str, business_date: date, sequence: int) -> str:
    if sequence < 1:
        raise SequenceError("sequence must be >= 1")
    return f"{prefix}-{business_date:%Y%m%d}-{sequence:03d}"


def parse_order_number(value: str, prefix: str = "ORD") -> tuple[date, int]:
    """Return (business_date, sequence) for an order number."""
    match = re.fullmatch(rf"{re.escape(prefix)}-(\d{{8}})-(\d{{3,}})", value or "")
    if not match:
        raise SequenceError(f"Malformed order number: {value!r}")
    raw_date, raw_seq = match.groups()
    try:
        business_date = date(int(raw_date[:4]), int(raw_date[4:6]), int(raw_date[6:]))
    except ValueError:
        raise SequenceError(f"Malformed order number date: {value!r}")
    return business_date, int(raw_seq)


def format_invoice_number(prefix: str, invoice_date: date, sequence: int) -> str:
    if sequence < 1:
        raise SequenceError("sequence must be >= 1")
    return f"{prefix}/{month_to_roman(invoice_date.month)}/{invoice_date.year % 100:02d}/{sequence:04d}"


def parse_invoice_number(value: str, prefix: str = "SL/OJ-MKT") -> InvoiceNumber:
    match = re.fullmatch(rf"{re.escape(prefix)}/([IVX]+)/(\d{{2}})/(\d{{4,}})", value or "")
    if not match:
        raise SequenceError(f"Malformed invoice number: {value!r}")
    roman, short_year, raw_seq = match.groups()
    return InvoiceNumber(
        prefix=prefix,
        month=roman_to_month(roman),
        year=2000 + int(short_year),
        sequence=int(raw_seq),
    )


def order_bucket_key(business_date: date) -> str:
    return f"{business_date:%Y%m%d}"


def invoice_bucket_key(invoice_date: date) -> str:
    return f"{invoice_date:%Y%m}"


def allocate(
    sequence_name: str,
    bucket_key: str,
    *,
    seed: Optional[Callable[[], int]] = None,
    session=None,
) -> int:
    """
    Allocate the next value of a sequence within a bucket.

    Runs inside the caller's transaction; the bucket row stays locked until
    that transaction commits or rolls back. May block behind a concurrent
    allocation in the same bucket.
    """
    session = session or db.session
    if not sequence_name:
        raise SequenceError("sequence_name is required")
    if not bucket_key:
        raise SequenceError("bucket_key is required")

    bucket = _locked_bucket(session, sequence_name, bucket_key)

    if bucket is None:
        start = seed() if seed else 0
        stmt = bucket_insert_statement(session.get_bind().dialect.name, sequence_name, bucket_key, start)
        if stmt is None:
            bucket = SequenceBucket(sequence_name=sequence_name, bucket_key=bucket_key, last_value=start + 1)
            session.add(bucket)
            try:
                session.flush()
            except IntegrityError as exc:
                raise SequenceConflictError(
                    f"Concurrent allocation created sequence bucket {sequence_name}:{bucket_key}"
                ) from exc
            return bucket.last_value

        # A concurrent creator's row wins; this insert then waits for it and does nothing.
        session.execute(stmt)
        bucket = _locked_bucket(session, sequence_name, bucket_key)

    bucket.last_value = bucket.last_value + 1
    session.flush()
    return bucket.last_value


def _locked_bucket(session, sequence_name: str, bucket_key: str) -> Optional[SequenceBucket]:
    return lock_for_update(
        session.query(SequenceBucket).filter_by(sequence_name=sequence_name, bucket_key=bucket_key)
    ).populate_existing().first()


def bucket_insert_statement(dialect_name: str, sequence_name: str, bucket_key: str, start: int):
    """
    INSERT of a new bucket row that is skipped when the bucket already exists.

    Returns None for dialects without a conflict-ignoring insert; allocate()
    then falls back to a plain insert that surfaces a race as SequenceConflictError.
    """
    if dialect_name == "postgresql":
        insert = postgresql.insert
    elif dialect_name == "sqlite":
        insert = sqlite.insert
    else:
        return None
    return (
        insert(SequenceBucket)
        .values(sequence_name=sequence_name, bucket_key=bucket_key, last_value=start)
        .on_conflict_do_nothing(index_elements=["sequence_name", "bucket_key"])
    )


def _max_suffix(values: Iterable[Optional[str]], parse: Callable[[str], int]) -> int:
    highest = 0
    for value in values:
        if not value:
            continue
        try:
            highest = max(highest, parse(value))
        except SequenceError:
            continue
    return highest


def next_order_number(business_date: date, *, prefix: Optional[str] = None, session=None) -> str:
    """Allocate ORD-YYYYMMDD-NNN for the given business day."""
    session = session or db.session
    prefix = prefix or current_app.config["ORDER_NUMBER_PREFIX"]
    pattern = f"{prefix}-{business_date:%Y%m%d}-"

    def _seed() -> int:
        rows = lock_for_update(
            session.query(Order).filter(Order.order_number.startswith(pattern, autoescape=True))
        ).with_entities(Order.order_number).all()
        return _max_suffix((r[0] for r in rows), lambda v: parse_order_number(v, prefix)[1])

    sequence = allocate(
        f"{ORDER_SEQUENCE}:{prefix}",
        order_bucket_key(business_date),
        seed=_seed,
        session=session,
    )
    return format_order_number(prefix, business_date, sequence)


def next_invoice_number(invoice_date: date, *, prefix: Optional[str] = None, session=None) -> str:
    """Allocate an invoice number in the invoice date's own month, not today's."""
    session = session or db.session
    prefix = prefix or current_app.config["INVOICE_NUMBER_PREFIX"]
    pattern = f"{prefix}/{month_to_roman(invoice_date.month)}/{invoice_date.year % 100:02d}/"

    def _seed() -> int:
        current = lock_for_update(
            session.query(Order).filter(Order.invoice_number.startswith(pattern, autoescape=True))
        ).with_entities(Order.invoice_number).all()
        # Numbers retired by a month change were issued too and must not come back
        retired = session.query(Order.previous_invoice_number).filter(
            Order.previous_invoice_number.startswith(pattern, autoescape=True)
        ).all()
        values = [r[0] for r in current] + [r[0] for r in retired]
        return _max_suffix(values, lambda v: parse_invoice_number(v, prefix).sequence)

    sequence = allocate(
        f"{INVOICE_SEQUENCE}:{prefix}",
        invoice_bucket_key(invoice_date),
        seed=_seed,
        session=session,
    )
    return format_invoice_number(prefix, invoice_date, sequence)
