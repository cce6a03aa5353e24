"""Date-scoped, human-readable bill numbers (``INV-YYYYMMDD-NNNN``)."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Union

from . import log
from .constants import BILL_NUMBER_PREFIX, SheetName
from .context import RuntimeContext

SEQUENCE_WIDTH = 4
_BILL_NUMBER_PATTERN = re.compile(rf"^{BILL_NUMBER_PREFIX}-(\d{{8}})-(\d+)$")


def bill_prefix(for_date: Union[date, datetime]) -> str:
    return f"{BILL_NUMBER_PREFIX}-{for_date.strftime('%Y%m%d')}"


def format_bill_number(for_date: Union[date, datetime], sequence: int) -> str:
    return f"{bill_prefix(for_date)}-{sequence:0{SEQUENCE_WIDTH}d}"


def parse_sequence(bill_number: str) -> int:
    """Return the numeric suffix of a bill number.

    Raises:
        ValueError: If ``bill_number`` does not follow the expected format.
    """
    match = _BILL_NUMBER_PATTERN.match(bill_number)
    if match is None:
        raise ValueError(f"Malformed bill number: {bill_number}")
    return int(match.group(2))


def next_bill_number(context: RuntimeContext, for_date: Union[date, datetime]) -> str:
    """Return the next free bill number for ``for_date``.

    The sequence is the highest existing sequence for that date plus one,
    starting at ``0001``. The caller must invoke this inside the transaction
    that inserts the bill; the store lock is what keeps two concurrent sales
    from drawing the same number.
    """
    if not context.store.in_transaction:
        raise RuntimeError("Bill numbers must be drawn inside the creating transaction")

    prefix = bill_prefix(for_date) + "-"
    sequences = [
        parse_sequence(bill.bill_number)
        for bill in context.store.rows(SheetName.SALES_BILLS, lambda bill: bill.bill_number.startswith(prefix))
    ]
    bill_number = format_bill_number(for_date, max(sequences, default=0) + 1)
    log.debug("Allocated bill number %s", bill_number)
    return bill_number
