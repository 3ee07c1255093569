"""
配送请求仓储接口（只读）
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import DeliveryRequest


class DeliveryRequestRepository(ABC):

    @abstractmethod
    async def get_by_id(self, request_id: str) -> Optional[DeliveryRequest]:
        """根据ID获取配送请求"""
        pass
