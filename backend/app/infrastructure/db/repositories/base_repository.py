"""
Base Repository for My Mechanic API

Generic session-bound repository for append-style tables (audit records).
Repositories that own their transactions use persistence_scope instead.
"""

from typing import TypeVar, Generic, List, Type

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel


ModelType = TypeVar("ModelType", bound=SQLModel)
CreateSchemaType = TypeVar("CreateSchemaType", bound=SQLModel)


class BaseRepository(Generic[ModelType, CreateSchemaType]):
    """
    Generic async repository bound to a caller-owned session.

    Args:
        model: The SQLModel table class to operate on
        session: Async database session (committed by the caller)
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self._model = model
        self._session = session

    async def create_many(self, data_list: List[CreateSchemaType]) -> List[ModelType]:
        """
        Bulk insert records.

        Args:
            data_list: List of create schemas

        Returns:
            List of model instances (flushed, not refreshed)
        """
        db_objects = [self._model.model_validate(data) for data in data_list]
        self._session.add_all(db_objects)
        await self._session.flush()
        return db_objects
