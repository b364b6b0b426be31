"""Order confirmation template — sent once when an order completes."""

from notifications.channel.mail_port import MailTemplate


class OrderConfirmationTemplate:
    template = MailTemplate.ORDER_CONFIRMATION

    @staticmethod
    def render(context: dict) -> dict:
        order_id = context.get("order_id", "N/A")
        return {
            "subject": f"Order #{order_id} Confirmed",
            "body": (
                f"Your order #{order_id} has been placed.\n\n"
                "We'll notify you once your order ships.\n\n"
                "Thank you for shopping with us!"
            ),
        }
