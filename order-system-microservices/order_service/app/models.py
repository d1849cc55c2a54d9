from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String
from .database import Base # Import the Base class from our database setup

ORDER_STATUS_CREATED = "CREATED"


# Defines the ORM model for an 'Order' stored in the database.
class Order(Base):
    # The name of the database table.
    __tablename__ = "orders"

    # Define the table columns.
    id = Column(String(36), primary_key=True) # uuid4 generated by the ledger.
    user_id = Column(String, nullable=False)
    amount_cents = Column(Integer, nullable=False)
    currency = Column(String, nullable=False)
    status = Column(String, nullable=False) # Always "CREATED"; never transitioned.
    idempotency_key = Column(String, unique=True, nullable=False) # Client key; the upsert conflicts on it.
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="positive_amount"),
    )

    def to_dict(self):
        return {
            "order_id": self.id,
            "user_id": self.user_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "status": self.status,
            "idempotency_key": self.idempotency_key,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
