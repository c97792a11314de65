import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from invoicer.models.db_models import Counter
from invoicer.services.numbering import PREFIXES

logger = logging.getLogger(__name__)


class SequenceCounterService:
    """
    Named monotonic counters stored in the same database as the documents
    they number.

    The counter row holds the last value handed out. `increment_and_get`
    does not commit; the caller runs it inside the same transaction as the
    row it numbers so that both land or neither does.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    @staticmethod
    def _check_name(name: str) -> None:
        if name not in PREFIXES:
            raise ValueError(f"Unknown counter '{name}'.")

    async def current(self, name: str) -> int:
        self._check_name(name)
        result = await self.db.execute(select(Counter.value).where(Counter.name == name))
        return result.scalar_one_or_none() or 0

    async def peek_next(self, name: str) -> int:
        """Value the next increment would return. Never writes."""
        return await self.current(name) + 1

    async def increment_and_get(self, name: str) -> int:
        """
        Bump the counter by one and return the new value.

        A single UPDATE ... RETURNING statement, so two allocations in the
        same event-loop tick can never observe the same value.
        """
        self._check_name(name)
        result = await self.db.execute(
            update(Counter)
            .where(Counter.name == name)
            .values(value=Counter.value + 1)
            .returning(Counter.value)
        )
        value = result.scalar_one_or_none()
        if value is None:
            # Fresh store without seeded rows: the missing counter counts as 0
            self.db.add(Counter(name=name, value=1))
            await self.db.flush()
            value = 1
        logger.debug("Counter '%s' advanced to %d", name, value)
        return value

    async def reset(self, name: str) -> None:
        self._check_name(name)
        result = await self.db.execute(
            update(Counter).where(Counter.name == name).values(value=0)
        )
        if result.rowcount == 0:
            self.db.add(Counter(name=name, value=0))
            await self.db.flush()
        logger.info("Counter '%s' reset to 0", name)

    async def reset_all(self) -> None:
        for name in PREFIXES:
            await self.reset(name)
