"""Infrastructure models package exports."""
from .base import Base, metadata
from .user import UserModel
from .delivery_request import DeliveryRequestModel, RequestItemModel
from .payment import PaymentModel, PaymentMethodModel

__all__ = [
    "Base",
    "metadata",
    "UserModel",
    "DeliveryRequestModel",
    "RequestItemModel",
    "PaymentModel",
    "PaymentMethodModel",
]
