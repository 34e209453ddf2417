from abc import ABC, abstractmethod
import logging

import httpx
from jinja2 import Environment, BaseLoader, select_autoescape

from .config import EMAIL_API_KEY, EMAIL_API_URL, EMAIL_FROM
from .model.domain import Order

logger = logging.getLogger(__name__)

_env = Environment(
    loader=BaseLoader(),
    autoescape=select_autoescape(default_for_string=False),
    trim_blocks=True,
    lstrip_blocks=True,
)

CONFIRMATION_SUBJECT = "Your entries are confirmed - order {{ order.id[:8] }}"

CONFIRMATION_TEXT = """\
Hi {{ order.first_name }},

Thank you for your order! You're now entered into the draw. Good luck!

{% for item in order.items %}
{{ item.title or item.competition_id }}: {{ item.qty }} ticket{{ "s" if item.qty > 1 }} x £{{ "%.2f"|format(item.unit_price / 100) }}
{% if item.tickets %}
  Your tickets: {% for n in item.tickets %}#{{ "{:,}".format(n) }}{{ ", " if not loop.last }}{% endfor %}

{% else %}
  Tickets will be allocated shortly.
{% endif %}
{% endfor %}

Total paid: £{{ "%.2f"|format(order.amount_total / 100) }}
{% if order.points_earned %}
Points earned: {{ order.points_earned }}
{% endif %}
"""


def render_confirmation(order: Order) -> tuple[str, str]:
    subject = _env.from_string(CONFIRMATION_SUBJECT).render(order=order)
    body = _env.from_string(CONFIRMATION_TEXT).render(order=order)
    return subject, body


# ----------------------------
# Notifier Interface
# ----------------------------
class Notifier(ABC):
    @abstractmethod
    async def send_order_confirmation(self, order: Order) -> None: ...


class LoggingNotifier(Notifier):
    """Used when no email API key is configured."""

    async def send_order_confirmation(self, order: Order) -> None:
        subject, _ = render_confirmation(order)
        logger.info("confirmation for order %s to %s not sent (no email "
                    "API key): %s", order.id, order.email, subject)


class EmailNotifier(Notifier):
    def __init__(
        self,
        http: httpx.AsyncClient,
        api_url: str = EMAIL_API_URL,
        api_key: str = EMAIL_API_KEY,
        sender: str = EMAIL_FROM,
    ) -> None:
        self.http = http
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender

    async def send_order_confirmation(self, order: Order) -> None:
        subject, text = render_confirmation(order)
        r = await self.http.post(
            self.api_url,
            json={
                "from": self.sender,
                "to": [order.email],
                "subject": subject,
                "text": text,
            },
            headers={"authorization": f"Bearer {self.api_key}"},
        )
        # non-2xx raises so the dispatcher retries
        r.raise_for_status()
        logger.info("confirmation for order %s sent to %s",
                    order.id, order.email)


def new_notifier(http: httpx.AsyncClient | None) -> Notifier:
    if EMAIL_API_KEY and http is not None:
        return EmailNotifier(http)
    return LoggingNotifier()
