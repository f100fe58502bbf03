"""
IdentifierAllocator -- human-readable sequential identifiers under concurrency.

Responsibility:
    Produces the next identifier in a namespace (``TXN-A000123``,
    ``CLM-0000042``) and performs the caller's insert with it.  Uniqueness
    is guaranteed by the UNIQUE constraint on the identifier column; a lost
    race surfaces as ``IntegrityError`` and is retried with a fresh scan.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by DrawdownGenerator, TransactionService and ClaimPackager.

Invariants enforced:
    - Every allocated identifier is strictly greater than every parseable
      identifier visible at scan time, legacy suffixed forms included.
      Each scan reads only the top ``scan_limit`` rows in descending order.
    - Each attempt runs inside a SAVEPOINT so a conflict rolls back only
      the attempt, never the caller's surrounding work.
    - Exhausting the retry ceiling raises; a record is never skipped.

Failure modes:
    - IdentifierAllocationExhaustedError after ``max_attempts`` conflicts.
    - IdentifierError when a lettered series runs past ``Z``.
    - If the top ``scan_limit`` rows are all unparseable the candidate
      restarts the series, conflicts, and ends in exhaustion.
    - Database errors raised by the scan propagate unchanged; a failed scan
      is never treated as an empty namespace.

Retry-on-conflict keeps identifiers gap-free without a counter table.  A
locked counter row or a database sequence is an equally valid replacement if
contention grows.
"""

import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import InstrumentedAttribute, Session

from sda_kernel.exceptions import IdentifierAllocationExhaustedError, IdentifierError
from sda_kernel.logging_config import get_logger

logger = get_logger("services.identifier_allocator")

T = TypeVar("T")

_LETTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"

# Rows read from the top of the namespace on each attempt
DEFAULT_SCAN_LIMIT = 100


@dataclass(frozen=True)
class IdentifierNamespace:
    """
    Format of one identifier series.

    ``lettered`` series carry a letter block before the digits
    (``TXN-A000001`` .. ``TXN-A999999``, then ``TXN-B000001``).  Any
    ``-<digits>`` suffix appended by earlier numbering schemes is tolerated
    when parsing and ignored for ordering.
    """

    prefix: str
    width: int
    lettered: bool = False

    @property
    def block_size(self) -> int:
        return 10 ** self.width - 1

    @property
    def pattern(self) -> re.Pattern[str]:
        letter = "([A-Z])" if self.lettered else "()"
        return re.compile(
            rf"^{re.escape(self.prefix)}-{letter}(\d{{{self.width}}})(?:-\d+)?$"
        )

    def parse(self, identifier: str) -> int | None:
        """Ordinal position of an identifier, or None if it is not in the series."""
        match = self.pattern.match(identifier or "")
        if match is None:
            return None
        letter, digits = match.groups()
        number = int(digits)
        if number == 0:
            return None
        if not self.lettered:
            return number
        return _LETTERS.index(letter) * self.block_size + number

    def format(self, ordinal: int) -> str:
        """Render an ordinal position as an identifier."""
        if not self.lettered:
            if ordinal > self.block_size:
                raise IdentifierError(f"{self.prefix} identifier series exhausted")
            return f"{self.prefix}-{ordinal:0{self.width}d}"
        block, offset = divmod(ordinal - 1, self.block_size)
        if block >= len(_LETTERS):
            raise IdentifierError(f"{self.prefix} identifier series exhausted")
        return f"{self.prefix}-{_LETTERS[block]}{offset + 1:0{self.width}d}"

    @property
    def first(self) -> str:
        return self.format(1)


TRANSACTION_NAMESPACE = IdentifierNamespace(prefix="TXN", width=6, lettered=True)
CLAIM_NAMESPACE = IdentifierNamespace(prefix="CLM", width=7)


def next_identifier(namespace: IdentifierNamespace, existing: Iterable[str]) -> str:
    """
    Next identifier after the highest parseable one in ``existing``.

    An empty or fully unparseable set is the start of the series, not an
    error.
    """
    highest = 0
    for identifier in existing:
        ordinal = namespace.parse(identifier)
        if ordinal is not None and ordinal > highest:
            highest = ordinal
    return namespace.format(highest + 1)


def is_unique_violation(exc: IntegrityError) -> bool:
    """True when an IntegrityError was raised by a UNIQUE constraint."""
    orig = exc.orig
    if getattr(orig, "pgcode", None) == "23505":
        return True
    return "unique" in str(orig).lower()


class IdentifierAllocator:
    """
    Allocates identifiers by scan, format and insert, retrying on conflict.

    Contract:
        ``allocate()`` calls ``insert(identifier)`` inside a SAVEPOINT and
        flushes.  The callable adds the row carrying the identifier to the
        session and returns whatever the caller wants back.

    Guarantees:
        - Up to ``max_attempts`` attempts, sleeping
          ``backoff_seconds * attempt`` between them.
        - Non-unique IntegrityErrors (CHECK violations and the like) are
          not retried; they propagate to the caller.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        max_attempts: int = 5,
        backoff_seconds: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
        scan_limit: int = DEFAULT_SCAN_LIMIT,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if scan_limit < 1:
            raise ValueError("scan_limit must be at least 1")
        self._session = session
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._scan_limit = scan_limit

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def peek(self, namespace: IdentifierNamespace, column: InstrumentedAttribute) -> str:
        """Identifier the next allocation would try, without inserting."""
        return next_identifier(namespace, self._existing_identifiers(namespace, column))

    def allocate(
        self,
        namespace: IdentifierNamespace,
        column: InstrumentedAttribute,
        insert: Callable[[str], T],
    ) -> T:
        """
        Allocate the next identifier and insert the row that carries it.

        Raises:
            IdentifierAllocationExhaustedError: every attempt conflicted.
        """
        candidate: str | None = None
        for attempt in range(1, self._max_attempts + 1):
            candidate = next_identifier(
                namespace, self._existing_identifiers(namespace, column)
            )
            try:
                with self._session.begin_nested():
                    result = insert(candidate)
                    self._session.flush()
            except IntegrityError as exc:
                if not is_unique_violation(exc):
                    raise
                logger.warning(
                    "identifier_conflict_retry",
                    extra={
                        "prefix": namespace.prefix,
                        "candidate": candidate,
                        "attempt": attempt,
                        "max_attempts": self._max_attempts,
                    },
                )
                if attempt < self._max_attempts:
                    self._sleep(self._backoff_seconds * attempt)
                continue

            logger.debug(
                "identifier_allocated",
                extra={
                    "prefix": namespace.prefix,
                    "identifier": candidate,
                    "attempt": attempt,
                },
            )
            return result

        logger.error(
            "identifier_allocation_exhausted",
            extra={
                "prefix": namespace.prefix,
                "attempts": self._max_attempts,
                "last_candidate": candidate,
            },
        )
        raise IdentifierAllocationExhaustedError(
            namespace.prefix, self._max_attempts, candidate
        )

    def _existing_identifiers(
        self,
        namespace: IdentifierNamespace,
        column: InstrumentedAttribute,
    ) -> list[str]:
        """
        The highest ``scan_limit`` identifiers under the namespace prefix.

        Identifiers are fixed width with the letter block leading, so
        descending string order is descending series order.  A legacy
        suffixed form sorts directly after its base identifier.
        """
        return list(
            self._session.execute(
                select(column)
                .where(column.like(f"{namespace.prefix}-%"))
                .order_by(column.desc())
                .limit(self._scan_limit)
            ).scalars()
        )
