"""Field data access, including the per-field reservation serialization point."""

from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.field import Field
from .base_repository import BaseRepository


class FieldRepository(BaseRepository[Field]):
    def __init__(self, db: Session):
        super().__init__(db, Field)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(joinedload(Field.branch))

    def claim_for_reservation(self, field_id: int) -> Optional[Field]:
        """
        Bump the field's reservation counter and return the field.

        Must be the first write of the reservation transaction: it takes the
        write lock that concurrent reservations for the same field queue
        behind, until this transaction commits or rolls back. Returns None
        when the field does not exist.
        """
        try:
            result = self.db.execute(
                update(Field)
                .where(Field.id == field_id)
                .values(reservation_seq=Field.reservation_seq + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return None
            field = self.db.get(Field, field_id, populate_existing=True)
            return field
        except SQLAlchemyError as e:
            self.logger.error(f"Error claiming field {field_id} for reservation: {str(e)}")
            raise RepositoryException(f"Failed to lock field {field_id}: {str(e)}") from e
