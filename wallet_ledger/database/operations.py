"""
Database operations module for batch writes.
Provides duplicate-tolerant batch inserts and transactional replace-on-write.
"""

import logging
import pandas as pd
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Type
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, select

logger = logging.getLogger(__name__)

# Keeps IN (...) lists well under driver parameter limits
LOOKUP_CHUNK_SIZE = 500


def unique_positions(records: Sequence[Dict[str, Any]], subset: List[str], keep: str = "first") -> List[int]:
    """Positions of the records that survive de-duplication on ``subset``.

    Only the key columns go through pandas, so record values keep their
    original Python types.

    Args:
        records: Records to de-duplicate
        subset: Key column names
        keep: 'first' or 'last', as in DataFrame.drop_duplicates

    Returns:
        Sorted list of positions into ``records``
    """
    if not records:
        return []

    keys = pd.DataFrame([{column: record.get(column) for column in subset} for record in records])
    return sorted(keys.drop_duplicates(subset=subset, keep=keep).index.tolist())


class DatabaseOperations:
    """Database operations handler for batch writes."""

    def __init__(self, session: Session):
        """Initialize with database session.

        Args:
            session: SQLModel Session instance
        """
        self.session = session

    def existing_values(self, column, values: Iterable[Any], *criteria) -> Set[Any]:
        """Return the subset of ``values`` already stored in ``column``.

        Args:
            column: Model column to match, e.g. TransactionHistory.hash
            values: Candidate values
            criteria: Extra WHERE clauses, e.g. TransactionHistory.network == network

        Returns:
            Set of values found in storage
        """
        candidates = list(dict.fromkeys(v for v in values if v is not None))
        found: Set[Any] = set()

        for start in range(0, len(candidates), LOOKUP_CHUNK_SIZE):
            chunk = candidates[start:start + LOOKUP_CHUNK_SIZE]
            statement = select(column).where(column.in_(chunk), *criteria)
            found.update(self.session.exec(statement).all())

        return found

    def insert_tolerating_duplicates(
        self,
        model_class: Type[SQLModel],
        records: List[Dict[str, Any]],
        exists: Callable[[Session, Dict[str, Any]], bool]
    ) -> int:
        """Insert records as one batch, falling back to per-record inserts on a uniqueness violation.

        A record whose per-record insert fails is skipped only if ``exists``
        confirms its natural key is now stored; any other error propagates.

        Args:
            model_class: SQLModel table class
            records: Column dictionaries for new rows
            exists: Callback checking whether a record's natural key is stored

        Returns:
            Number of rows inserted
        """
        if not records:
            return 0

        table_name = model_class.__tablename__

        try:
            self.session.add_all([model_class(**record) for record in records])
            self.session.commit()
            return len(records)
        except IntegrityError as e:
            self.session.rollback()
            logger.warning(
                f"Batch insert of {len(records)} rows into {table_name} hit a uniqueness violation, "
                f"retrying per record: {e.orig}"
            )

        inserted = 0
        for record in records:
            try:
                self.session.add(model_class(**record))
                self.session.commit()
                inserted += 1
            except IntegrityError:
                self.session.rollback()
                if exists(self.session, record):
                    logger.debug(f"Skipping duplicate row in {table_name}")
                    continue
                raise

        return inserted

    def replace_rows(
        self,
        model_class: Type[SQLModel],
        criteria: List[Any],
        records: List[Dict[str, Any]],
        after_replace: Optional[Callable[[Session], None]] = None
    ) -> int:
        """Delete every row matching ``criteria`` and insert ``records`` in one transaction.

        Args:
            model_class: SQLModel table class
            criteria: WHERE clauses selecting the rows to replace
            records: Column dictionaries for the new rows
            after_replace: Optional extra write committed in the same transaction

        Returns:
            Number of rows inserted
        """
        try:
            self.session.execute(delete(model_class).where(*criteria))
            self.session.add_all([model_class(**record) for record in records])
            if after_replace is not None:
                after_replace(self.session)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.debug(f"Replaced rows in {model_class.__tablename__} with {len(records)} new rows")
        return len(records)
