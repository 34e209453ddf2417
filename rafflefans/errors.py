"""Domain errors for ticket allocation and order fulfillment."""

from dataclasses import dataclass, field
from enum import Enum


class ErrorCode(Enum):
    """Domain error codes."""

    TICKET_COLLISION = "TICKET_COLLISION"
    ALLOCATION_EXHAUSTED = "ALLOCATION_EXHAUSTED"
    ORDER_NOT_FOUND = "ORDER_NOT_FOUND"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    INVALID_EVENT = "INVALID_EVENT"
    INVALID_CHECKOUT = "INVALID_CHECKOUT"


@dataclass(eq=False)
class DomainError(Exception):
    """Base domain error with code and operator-safe message."""

    code: ErrorCode
    message: str

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class CollisionError(DomainError):
    """Raised when a (competition, number) pair is already taken."""

    def __init__(self, competition_id: str, number: int) -> None:
        super().__init__(
            code=ErrorCode.TICKET_COLLISION,
            message=f"Ticket {number} already taken in {competition_id}",
        )
        self.competition_id = competition_id
        self.number = number


class AllocationExhausted(DomainError):
    """Raised when the retry budget runs out before `requested` numbers.

    `allocated` holds the numbers this call did manage to reserve; they stay
    reserved.
    """

    def __init__(self, competition_id: str, requested: int,
                 allocated: list[int] | None = None,
                 reason: str = "retry budget exhausted") -> None:
        allocated = list(allocated or [])
        super().__init__(
            code=ErrorCode.ALLOCATION_EXHAUSTED,
            message=(
                f"Allocated {len(allocated)} of {requested} tickets for "
                f"{competition_id}: {reason}"
            ),
        )
        self.competition_id = competition_id
        self.requested = requested
        self.allocated = allocated

    @property
    def missing(self) -> int:
        return self.requested - len(self.allocated)


class OrderNotFound(DomainError):
    """Raised when no order matches a payment session or order id."""

    def __init__(self, lookup: str) -> None:
        super().__init__(
            code=ErrorCode.ORDER_NOT_FOUND,
            message="Order not found",
        )
        self.lookup = lookup


class AlreadyProcessed(DomainError):
    """Raised by the conditional paid transition when the order left pending."""

    def __init__(self, order_id: str, status: str | None = None) -> None:
        super().__init__(
            code=ErrorCode.ALREADY_PROCESSED,
            message=f"Order already processed (status={status})",
        )
        self.order_id = order_id
        self.status = status


class InvalidEvent(DomainError):
    """Raised for unsigned, tampered or malformed payment events."""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.INVALID_EVENT, message=message)


class InvalidCheckout(DomainError):
    """Raised when a checkout request cannot become an order."""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.INVALID_CHECKOUT, message=message)


@dataclass
class ErrorBody:
    """JSON body returned for domain errors at the HTTP edge."""

    code: str
    message: str
    details: dict = field(default_factory=dict)

    @classmethod
    def from_error(cls, err: DomainError) -> "ErrorBody":
        return cls(code=err.code.value, message=err.message)
