"""Order mail port — abstract interface for transactional order mail."""

from abc import ABC, abstractmethod
from enum import Enum


class MailTemplate(Enum):
    ORDER_CONFIRMATION = "order_confirmation"
    ORDER_CANCELLATION = "order_cancellation"


class OrderMailPort(ABC):
    """Abstract interface for order mail adapters."""

    @abstractmethod
    def send(self, order_id: int, template: MailTemplate) -> dict:
        """Send the mail rendered from ``template`` for an order.

        Returns:
            dict with keys: message_id, status ("sent")

        Raises:
            ConnectionError: the mail could not be handed to the provider
        """
        ...
