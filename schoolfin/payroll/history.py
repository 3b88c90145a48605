"""
Where finalized payroll goes.

A sink accepts a whole period in one call and either stores all of it or none
of it. Querying ``is_finalized`` is how a caller tells "already finalized" from
"not finalized yet" after a failed or timed-out call.
"""
import asyncio
from typing import List, Optional, Protocol, Sequence, runtime_checkable

from sqlalchemy.orm import sessionmaker

from ..core.repositories import PayrollRunsRepository
from ..core.schemas import PayrollRecord


@runtime_checkable
class PayrollHistorySink(Protocol):
    async def append_batch(self, period: str, records: Sequence[PayrollRecord]) -> None: ...

    async def is_finalized(self, period: str) -> bool: ...


class SqlPayrollHistorySink:
    """Stores batches through ``PayrollRunsRepository`` off the event loop."""

    def __init__(self, school_id: str, session_factory: Optional[sessionmaker] = None,
                 repository: Optional[PayrollRunsRepository] = None):
        self.repository = repository or PayrollRunsRepository(school_id, session_factory)

    async def append_batch(self, period: str, records: Sequence[PayrollRecord]) -> None:
        await asyncio.to_thread(self.repository.append_batch, period, list(records))

    async def is_finalized(self, period: str) -> bool:
        return await asyncio.to_thread(self.repository.has_period, period)

    async def records(self, period: str) -> List[PayrollRecord]:
        records, _ = await asyncio.to_thread(self.repository.query, None, period)
        return records
