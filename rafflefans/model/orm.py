from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    JSON,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.ext.asyncio import AsyncConnection


Base = declarative_base()

# order status
PENDING = "pending"
PAID = "paid"
FAILED = "failed"

# competition status
LIVE = "live"
CLOSED = "closed"
DRAFT = "draft"


# ----------------------------
# ORM models
# ----------------------------
class Competition(Base):
    __tablename__ = "competitions"
    id = Column(String, primary_key=True)
    title = Column(String, nullable=False, default="")
    price = Column(Integer, nullable=False, default=0)  # pence
    total_tickets = Column(Integer, nullable=False, default=10000)
    # only ever incremented, see inventory.increment_sold
    sold_tickets = Column(Integer, nullable=False, default=0)
    max_per_user = Column(Integer, nullable=False, default=50)
    # live | closed | draft
    status = Column(String, nullable=False, default=LIVE)
    draw_date = Column(String, nullable=False, default="")


class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint("competition_id", "number",
                         name="uq_tickets_competition_number"),
    )
    id = Column(Integer, primary_key=True, autoincrement=True)
    competition_id = Column(String, nullable=False)
    # durable competition identity when competition_id is a known listing
    competition_ref = Column(String, nullable=True)
    number = Column(Integer, nullable=False)
    email = Column(String, nullable=False, default="")
    created_at = Column(Float, nullable=False)


class Order(Base):
    __tablename__ = "orders"
    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, default="")
    email = Column(String, nullable=False)
    name = Column(String, nullable=False, default="")
    phone = Column(String, nullable=False, default="")
    address1 = Column(String, nullable=False, default="")
    address2 = Column(String, nullable=False, default="")
    city = Column(String, nullable=False, default="")
    postcode = Column(String, nullable=False, default="")

    amount_total = Column(Integer, nullable=False)  # pence
    currency = Column(String, nullable=False, default="gbp")

    payment_provider = Column(String, nullable=False, default="mockpay")
    payment_session_id = Column(String, nullable=True, unique=True)
    payment_intent_id = Column(String, nullable=True)

    # pending | paid | failed
    status = Column(String, nullable=False, default=PENDING)

    points_applied = Column(Integer, nullable=False, default=0)
    points_earned = Column(Integer, nullable=False, default=0)

    created_at = Column(Float, nullable=False)
    # set when a payment confirmation arrived but fulfillment stopped short
    confirmed_at = Column(Float, nullable=True)
    paid_at = Column(Float, nullable=True)


class OrderItem(Base):
    __tablename__ = "order_items"
    order_id = Column(String, ForeignKey("orders.id", ondelete="CASCADE"),
                      primary_key=True)
    position = Column(Integer, primary_key=True)
    competition_id = Column(String, nullable=False)
    title = Column(String, nullable=False, default="")
    qty = Column(Integer, nullable=False)
    unit_price = Column(Integer, nullable=False)  # pence
    currency = Column(String, nullable=False, default="gbp")
    ppt = Column(Integer, nullable=False, default=1)  # points per ticket
    skill_question_id = Column(String, nullable=False, default="")
    skill_question = Column(String, nullable=False, default="")
    selected_answer = Column(String, nullable=False, default="")
    tickets = Column(JSON, nullable=False, default=list)


class User(Base):
    __tablename__ = "users"
    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=False, default="")
    points = Column(Integer, nullable=False, default=0)
    points_updated_at = Column(Float, nullable=True)


class SavedBasket(Base):
    __tablename__ = "saved_baskets"
    user_id = Column(String, primary_key=True)
    email = Column(String, nullable=False)
    first_name = Column(String, nullable=False, default="")
    items = Column(JSON, nullable=False, default=list)
    saved_at = Column(Float, nullable=False)
    checked_out = Column(Boolean, nullable=False, default=False)


Index("idx_orders_created_at", Order.created_at)
Index("idx_orders_user_id", Order.user_id)
Index("idx_orders_status", Order.status)
Index("idx_tickets_competition_created", Ticket.competition_id,
      Ticket.created_at)


async def create_schema(conn: AsyncConnection) -> None:
    await conn.run_sync(Base.metadata.create_all)
