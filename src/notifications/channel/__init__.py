"""Order mailer registry.

Uses the fake mailer by default; a real adapter is installed with
set_mailer() at application start-up.
"""

from notifications.channel.mail_port import OrderMailPort

_current_mailer: OrderMailPort | None = None


def get_mailer() -> OrderMailPort:
    """Return the configured order mailer. Defaults to FakeOrderMailer."""
    global _current_mailer
    if _current_mailer is None:
        from notifications.channel.fake_mail import FakeOrderMailer

        _current_mailer = FakeOrderMailer()
    return _current_mailer


def set_mailer(mailer: OrderMailPort) -> None:
    global _current_mailer
    _current_mailer = mailer


def reset_mailer() -> None:
    """Reset the mailer singleton (useful for testing)."""
    global _current_mailer
    _current_mailer = None
