from abc import ABC, abstractmethod
from typing import Optional, TypedDict
import uuid
import hmac
import hashlib
import base64
import json
import time

from pydantic import ValidationError

from .config import MOCK_SECRET
from .errors import InvalidEvent
from .events import (
    CheckoutSessionClosed,
    CheckoutSessionCompleted,
    CHECKOUT_SESSION_EXPIRED,
    CHECKOUT_SESSION_COMPLETED,
)

SIGNATURE_HEADER = "x-mockpay-signature"


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class CreateSessionResult(TypedDict):
    payment_session_id: str
    redirect_url: str


class PaymentAdapter(ABC):
    name: str

    @abstractmethod
    def create_session(self, order_id: str) -> CreateSessionResult: ...

    @abstractmethod
    def verify_webhook(self, payload: bytes, headers: dict) -> dict: ...

    # "completed" | "failed" | "expired" | anything else is ignored
    @abstractmethod
    def event_kind(self, event: dict) -> str:
        ...

    @abstractmethod
    def parse_completed(self, event: dict) -> CheckoutSessionCompleted:
        ...

    @abstractmethod
    def parse_closed(self, event: dict) -> CheckoutSessionClosed:
        ...


# ----------------------------
# MockPay implementation
# ----------------------------
class MockPay(PaymentAdapter):
    name = "mockpay"

    def __init__(self, secret: str = MOCK_SECRET) -> None:
        self.secret = secret

    def create_session(self, order_id: str) -> CreateSessionResult:
        psid = f"mock_{uuid.uuid4().hex}"
        redirect_url = f"/mockpay/{psid}"
        return {"payment_session_id": psid, "redirect_url": redirect_url}

    def sign(self, payload: bytes) -> str:
        mac = hmac.new(self.secret.encode(), payload, hashlib.sha256).digest()
        return base64.b64encode(mac).decode()

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        sig = headers.get(SIGNATURE_HEADER)
        if not sig or not hmac.compare_digest(self.sign(payload), sig):
            raise InvalidEvent("Invalid signature")
        try:
            event = json.loads(payload.decode())
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise InvalidEvent("Invalid JSON")
        if not isinstance(event, dict):
            raise InvalidEvent("Event must be a JSON object")
        return event

    def event_kind(self, event: dict) -> str:
        return str(event.get("type", "")).split(".")[-1]

    def _validate(self, model, event: dict, **extra):
        data = event.get("data") or {}
        if not isinstance(data, dict):
            raise InvalidEvent("Event data must be a JSON object")
        try:
            return model.model_validate({
                **data,
                "idempotency_key": event.get("idempotency_key"),
                **extra,
            })
        except ValidationError as e:
            raise InvalidEvent(
                f"Malformed {event.get('type', 'event')}: "
                f"{e.error_count()} invalid field(s)"
            )

    def parse_completed(self, event: dict) -> CheckoutSessionCompleted:
        return self._validate(CheckoutSessionCompleted, event)

    def parse_closed(self, event: dict) -> CheckoutSessionClosed:
        return self._validate(
            CheckoutSessionClosed, event,
            expired=event.get("type") == CHECKOUT_SESSION_EXPIRED,
        )

    def build_event(
        self,
        psid: str,
        order_id: str,
        kind: str = CHECKOUT_SESSION_COMPLETED,
        customer_email: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> dict:
        return {
            "type": kind,
            "created_at": int(time.time()),
            "idempotency_key": f"evt_{uuid.uuid4().hex}",
            "data": {
                "payment_session_id": psid,
                "order_id": order_id,
                "payment_intent_id": f"pi_{uuid.uuid4().hex[:24]}",
                "customer_email": customer_email,
                "user_id": user_id,
            },
        }

    def signed_payload(self, event: dict) -> tuple[bytes, dict]:
        payload = json.dumps(event).encode()
        return payload, {
            SIGNATURE_HEADER: self.sign(payload),
            "content-type": "application/json",
        }
