import secrets
from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def new_subscription_id() -> str:
    """128 random bits rendered as lowercase hex."""
    return secrets.token_hex(16)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(
        String(32), primary_key=True, default=new_subscription_id
    )
    topic: Mapped[str] = mapped_column(
        String(200), nullable=False, default="", server_default="", index=True
    )
    # Natural key: one subscriber per endpoint
    endpoint: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    key_p256dh: Mapped[str] = mapped_column(Text, nullable=False)
    key_auth: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


class DeliveryLogEntry(Base):
    __tablename__ = "delivery_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # No foreign key: entries outlive the subscriber they refer to
    subscription_id: Mapped[str] = mapped_column(String(32), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        index=True,
    )
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)  # 0 = transport failure
    error: Mapped[str] = mapped_column(
        Text, nullable=False, default="", server_default=""
    )
