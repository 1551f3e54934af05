"""Payment data access."""

from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.payment import ORDER_ID_PREFIX, Payment
from .base_repository import BaseRepository


class PaymentRepository(BaseRepository[Payment]):
    def __init__(self, db: Session):
        super().__init__(db, Payment)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(joinedload(Payment.booking))

    def get_by_external_transaction_id(self, external_transaction_id: str) -> Optional[Payment]:
        """
        Resolve a gateway transaction reference to a payment.

        Accepts either the gateway-assigned transaction id or our ``PAY-<id>``
        order id, since notifications carry both.
        """
        try:
            payment = (
                self._apply_eager_loading(self.db.query(Payment))
                .filter(Payment.external_transaction_id == external_transaction_id)
                .first()
            )
            if payment is None and external_transaction_id.startswith(ORDER_ID_PREFIX):
                payment = (
                    self._apply_eager_loading(self.db.query(Payment))
                    .filter(Payment.order_id == external_transaction_id)
                    .first()
                )
            return payment
        except SQLAlchemyError as e:
            self.logger.error(
                f"Error resolving transaction {external_transaction_id}: {str(e)}"
            )
            raise RepositoryException(f"Failed to resolve transaction: {str(e)}") from e

    def get_by_booking_id(self, booking_id: str) -> Optional[Payment]:
        return self.find_one_by(booking_id=booking_id)
