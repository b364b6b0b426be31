"""Order cancellation template — sent when a completed order is canceled."""

from notifications.channel.mail_port import MailTemplate


class OrderCancellationTemplate:
    template = MailTemplate.ORDER_CANCELLATION

    @staticmethod
    def render(context: dict) -> dict:
        order_id = context.get("order_id", "N/A")
        return {
            "subject": f"Order #{order_id} Canceled",
            "body": (
                f"Your order #{order_id} has been canceled.\n\n"
                "If payment was captured, it will be returned to you "
                "automatically.\n\n"
                "If you have questions, please contact our support team."
            ),
        }
