"""
shared/utils/saga.py
Minimal saga helper for multi-row updates that must be undone together.

    saga = Saga("create_booking")
    booking = await saga.step(insert_booking, compensation=delete_booking)
    await saga.step(add_participant)

If a later step raises, the compensations of the completed steps run in
reverse order and the original exception propagates.
"""

import logging
from typing import Any, Awaitable, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[Any]]
Compensation = Callable[[Any], Awaitable[None]]


class Saga:
    def __init__(self, name: str):
        self.name = name
        self._completed: List[Tuple[str, Optional[Compensation], Any]] = []

    async def step(
        self,
        action: Action,
        compensation: Optional[Compensation] = None,
        name: Optional[str] = None,
    ) -> Any:
        step_name = name or getattr(action, "__name__", "step")
        try:
            result = await action()
        except Exception:
            logger.warning(f"Saga {self.name}: step '{step_name}' failed, compensating")
            await self.compensate()
            raise
        self._completed.append((step_name, compensation, result))
        return result

    async def compensate(self) -> None:
        """Undo completed steps in reverse order. Compensation failures are logged."""
        while self._completed:
            step_name, compensation, result = self._completed.pop()
            if compensation is None:
                continue
            try:
                await compensation(result)
            except Exception as e:
                logger.error(f"Saga {self.name}: compensation for '{step_name}' failed: {e}")
