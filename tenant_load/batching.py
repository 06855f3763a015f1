"""Cohort gate that holds provisioned users until their whole batch is ready."""

from __future__ import annotations

from typing import Callable, List, Optional, Tuple


class BatchGate:
    """Buffer stage-1 successes and release them one cohort at a time.

    Cohort ``k`` covers ordinals ``k*B+1 .. k*B+B``. Members that failed
    identity creation never enter the buffer, so a cohort may be smaller than
    ``B`` when it is evaluated at its window boundary.
    """

    def __init__(self, batch_size: int) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1 (got {batch_size})")
        self.batch_size = batch_size
        self._members: List[int] = []

    @property
    def pending(self) -> List[int]:
        return list(self._members)

    def add(self, ordinal: int) -> None:
        self._members.append(ordinal)

    def boundary(self, ordinal: int) -> bool:
        return ordinal % self.batch_size == 0

    def release(
        self, check: Callable[[int], None]
    ) -> Tuple[List[int], Optional[int], Optional[Exception]]:
        """Run ``check`` for every buffered member and empty the buffer.

        Returns ``(released, failed_member, error)``. ``released`` holds every
        member when all checks passed and is empty otherwise; the first
        failing member and its exception are reported.
        """
        members, self._members = self._members, []
        for member in members:
            try:
                check(member)
            except Exception as exc:
                return [], member, exc
        return members, None, None
