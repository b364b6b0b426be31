"""Template registry — maps MailTemplate to template classes."""

from notifications.channel.mail_port import MailTemplate
from notifications.templates.order_cancellation import OrderCancellationTemplate
from notifications.templates.order_confirmation import OrderConfirmationTemplate

TEMPLATE_REGISTRY: dict[MailTemplate, type] = {
    MailTemplate.ORDER_CONFIRMATION: OrderConfirmationTemplate,
    MailTemplate.ORDER_CANCELLATION: OrderCancellationTemplate,
}


def get_template(template: MailTemplate):
    """Look up a template class by mail template."""
    template_cls = TEMPLATE_REGISTRY.get(template)
    if template_cls is None:
        raise ValueError(f"No template registered for mail template: {template}")
    return template_cls
