"""
配送请求仓储实现（只读）
"""
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from domain.delivery.entity import DeliveryRequest, RequestItem
from domain.delivery.repository import DeliveryRequestRepository
from infrastructure.models.delivery_request import DeliveryRequestModel


class SQLAlchemyDeliveryRequestRepository(DeliveryRequestRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: DeliveryRequestModel) -> DeliveryRequest:
        return DeliveryRequest(
            id=model.id,
            requester_id=model.requester_id,
            trip_id=model.trip_id,
            delivery_fee=Decimal(str(model.delivery_fee)),
            items=[
                RequestItem(
                    name=item.name,
                    quantity=item.quantity,
                    estimated_price=Decimal(str(item.estimated_price)),
                    actual_price=Decimal(str(item.actual_price)) if item.actual_price is not None else None,
                )
                for item in model.items
            ],
        )

    async def get_by_id(self, request_id: str) -> Optional[DeliveryRequest]:
        db_request = await self.session.get(DeliveryRequestModel, request_id)
        return self._to_entity(db_request) if db_request else None
