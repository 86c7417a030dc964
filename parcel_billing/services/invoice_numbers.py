# ==== INVOICE NUMBER GENERATOR ==== #

"""
Invoice numbers of the form ``INV-YYYY-NNNN``.

Numbering is a lookup plus increment: the highest sequence already stored
for the year, plus one, zero padded to four digits. Two concurrent
creations can pick the same candidate, so the store's uniqueness
constraint is the source of truth and ``assign`` retries with the next
candidate on ``InvoiceNumberTaken``, up to a bounded number of attempts.
"""

import re
from typing import Awaitable, Callable, Optional

from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt

from parcel_billing.business.errors import ConflictError, InvoiceNumberTaken
from parcel_billing.observability.logging import get_logger
from parcel_billing.observability.metrics import invoice_number_conflicts_total
from parcel_billing.observability.tracing import get_tracer
from parcel_billing.services.ledger import InvoiceLedger


tracer = get_tracer(__name__)
logger = get_logger(__name__)

DEFAULT_PREFIX = "INV"
DEFAULT_MAX_ATTEMPTS = 5


def parse_sequence(number: Optional[str], prefix: str = DEFAULT_PREFIX, year: Optional[int] = None) -> Optional[int]:
    """Sequence part of ``number``, or ``None`` when it does not match."""
    match = re.match(rf"^{re.escape(prefix)}-(?P<year>\d{4})-(?P<sequence>\d+)$", number or "")
    if not match:
        return None
    if year is not None and int(match.group("year")) != year:
        return None
    return int(match.group("sequence"))


class InvoiceNumberGenerator:
    """
    Allocates invoice numbers against an invoice store.

    The store only needs ``max_sequence_for_year(year, prefix)``; the
    insert itself is supplied to ``assign`` as ``persist``.
    """

    def __init__(self, store, prefix: str = DEFAULT_PREFIX, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self.store = store
        self.prefix = prefix
        self.max_attempts = max(1, max_attempts)

    def format_number(self, year: int, sequence: int) -> str:
        return f"{self.prefix}-{year:04d}-{sequence:04d}"

    async def next(self, year: int) -> str:
        """Next candidate number for ``year``."""
        highest = await self.store.max_sequence_for_year(year, self.prefix)
        return self.format_number(year, (highest or 0) + 1)

    def _on_conflict(self, retry_state) -> None:
        invoice_number_conflicts_total.labels(outcome="retried").inc()
        exception = retry_state.outcome.exception()
        logger.warning(
            f"Invoice number conflict, retrying: {exception}",
            attempt=retry_state.attempt_number,
            number=getattr(exception, "number", None),
        )

    async def assign(
        self,
        ledger: InvoiceLedger,
        persist: Callable[[InvoiceLedger], Awaitable[None]],
    ) -> str:
        """
        Number ``ledger`` and persist it, retrying on uniqueness conflicts.

        Each attempt takes the larger of the store's next sequence and the
        previous candidate plus one, so a retry never reuses a number that
        was just rejected.

        Args:
            ledger (InvoiceLedger): Unnumbered ledger, year taken from its issue date
            persist (Callable): Insert coroutine raising ``InvoiceNumberTaken``
                when the number is already stored

        Returns:
            str: The assigned invoice number

        Raises:
            ConflictError: If every attempt collided
        """
        year = ledger.issue_date.year
        last_sequence = 0

        with tracer.start_as_current_span("assign_invoice_number") as span:
            span.set_attribute("year", year)
            span.set_attribute("max_attempts", self.max_attempts)

            try:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(self.max_attempts),
                    retry=retry_if_exception_type(InvoiceNumberTaken),
                    before_sleep=self._on_conflict,
                ):
                    with attempt:
                        highest = await self.store.max_sequence_for_year(year, self.prefix)
                        last_sequence = max(highest or 0, last_sequence) + 1
                        ledger.number = self.format_number(year, last_sequence)
                        await persist(ledger)
            except RetryError as e:
                ledger.number = None
                invoice_number_conflicts_total.labels(outcome="exhausted").inc()
                span.set_attribute("exhausted", True)
                raise ConflictError(
                    f"Could not allocate an invoice number for {year} after {self.max_attempts} attempts",
                    {"year": year, "attempts": self.max_attempts},
                ) from e.last_attempt.exception()

            span.set_attribute("invoice_number", ledger.number)
            return ledger.number
