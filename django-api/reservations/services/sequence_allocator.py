"""Sequence allocator - race numbers from one shared counter."""

import structlog

from reservations.domain.errors import ValidationError
from reservations.stores.interfaces import SequenceStore

logger = structlog.get_logger(__name__)


class SequenceAllocator:
    """Issues strictly increasing, zero-padded numbers.

    The counter row is locked and advanced by ``count`` in one step, so
    concurrent callers always receive disjoint ranges. Numbers released by a
    deletion are recorded but never issued again.
    """

    def __init__(self, store: SequenceStore, name: str = "race_numbers", width: int = 4, start: int = 1) -> None:
        self._store = store
        self._name = name
        self._width = width
        self._start = start

    def allocate_next(self, count: int) -> list[str]:
        if count < 1:
            raise ValidationError("Count must be at least 1", field="count")
        with self._store.atomic():
            first = self._store.advance(self._name, count, self._start)
        numbers = [self.format(value) for value in range(first, first + count)]
        logger.info("sequence_allocated", sequence=self._name, first=numbers[0], last=numbers[-1])
        return numbers

    def release(self, numbers: list[str], group_code: str, released_by: str | None = None) -> None:
        if not numbers:
            return
        with self._store.atomic():
            self._store.record_released(numbers, group_code, released_by or "")
        logger.info("sequence_released", sequence=self._name, group_code=group_code, numbers=numbers)

    def format(self, value: int) -> str:
        return str(value).zfill(self._width)
