import logging
from datetime import date, datetime
from typing import Awaitable, Callable, Optional

from schemas import BudgetIn, BudgetOut

logger = logging.getLogger(__name__)

SAVE_FAILED_MESSAGE = "Could not save the budget."

SaveBudget = Callable[[BudgetIn], Awaitable[BudgetOut]]


class BudgetMutationCoordinator:
    """Applies budget edits optimistically and reconciles them with the server.

    Each call takes a new request id; a response that arrives after a newer
    request was issued is dropped, so only the latest edit may apply its result
    or clear ``is_saving``.
    """

    def __init__(self, save: SaveBudget) -> None:
        self._save = save
        self._request_id = 0
        self.is_saving = False
        self.error: Optional[str] = None

    async def upsert_optimistic(
        self,
        *,
        month_date: date,
        type_id: int,
        amount: float,
        previous: Optional[BudgetOut],
        on_optimistic: Callable[[BudgetOut], None],
        on_rollback: Callable[[Optional[BudgetOut]], None],
        on_success: Optional[Callable[[BudgetOut], None]] = None,
    ) -> None:
        self._request_id += 1
        request_id = self._request_id
        self.is_saving = True
        self.error = None

        now = datetime.utcnow()
        on_optimistic(
            BudgetOut(
                month_date=month_date,
                type_id=type_id,
                amount=amount,
                created_at=previous.created_at if previous else now,
                updated_at=now,
            )
        )

        try:
            command = BudgetIn(month_date=month_date, type_id=type_id, amount=amount)
            saved = await self._save(command)
        except Exception as exc:
            if request_id != self._request_id:
                return
            logger.warning(f"budget_save_failed: type_id={type_id} error={exc}")
            self.error = str(exc) or SAVE_FAILED_MESSAGE
            on_rollback(previous)
            return
        finally:
            if request_id == self._request_id:
                self.is_saving = False

        if request_id != self._request_id:
            return
        on_optimistic(saved)
        if on_success:
            on_success(saved)
