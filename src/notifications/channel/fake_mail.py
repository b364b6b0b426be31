"""Fake order mailer — records sent mail for testing."""

from uuid import uuid4

from notifications.channel.mail_port import MailTemplate, OrderMailPort
from notifications.templates import get_template


class FakeOrderMailer(OrderMailPort):
    """Order mailer that records messages in memory for test assertions."""

    def __init__(self):
        self.sent: list[dict] = []
        self.should_succeed = True
        self.failure_reason = "Mail delivery failed"

    def configure(self, should_succeed: bool = True, failure_reason: str = "Mail delivery failed"):
        """Configure the fake adapter behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def send(self, order_id: int, template: MailTemplate) -> dict:
        if not self.should_succeed:
            raise ConnectionError(self.failure_reason)

        content = get_template(template).render({"order_id": order_id})
        message_id = f"mail-{uuid4().hex[:12]}"
        self.sent.append(
            {
                "message_id": message_id,
                "order_id": order_id,
                "template": template,
                "subject": content["subject"],
                "body": content["body"],
            }
        )
        return {"message_id": message_id, "status": "sent"}

    def sent_for(self, order_id: int, template: MailTemplate | None = None) -> list[dict]:
        return [
            record
            for record in self.sent
            if record["order_id"] == order_id and (template is None or record["template"] is template)
        ]

    def reset(self):
        """Clear sent mail (useful between tests)."""
        self.sent.clear()
        self.should_succeed = True
        self.failure_reason = "Mail delivery failed"
