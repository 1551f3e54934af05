from .base_repository import BaseRepository, IRepository
from .booking_repository import BookingRepository
from .factory import RepositoryFactory
from .field_repository import FieldRepository
from .payment_repository import PaymentRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "FieldRepository",
    "IRepository",
    "PaymentRepository",
    "RepositoryFactory",
]
