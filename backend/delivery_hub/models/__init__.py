from .branches import Branch
from .auth import User, SessionToken
from .requests import DeliveryRequest, DeliveryRequestItem, RequestProcessing
from .deliveries import Delivery

__all__ = [
    'Branch',
    'User', 'SessionToken',
    'DeliveryRequest', 'DeliveryRequestItem', 'RequestProcessing',
    'Delivery',
]
