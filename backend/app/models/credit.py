from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base
from ..utils.dates import utcnow

ACTION_JOB_CREATE = "JOB_CREATE"
ACTION_JOB_RENEW = "JOB_RENEW"
ACTION_PURCHASE = "PURCHASE"


class CreditAccount(Base):
    __tablename__ = "credit_accounts"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    institute_id = Column(Integer, ForeignKey("institutes.id", ondelete="CASCADE"), unique=True, nullable=False)
    balance = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    institute = relationship("Institute", back_populates="credit_account")
    history = relationship("CreditHistory", back_populates="account", order_by="CreditHistory.id")


class CreditHistory(Base):
    """Append-only: rows are inserted with the balance change and never updated."""
    __tablename__ = "credit_history"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("credit_accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    institute_id = Column(Integer, ForeignKey("institutes.id", ondelete="CASCADE"), nullable=False, index=True)
    # Plain id: history keeps the job reference after the job is deleted.
    job_id = Column(Integer, nullable=True, index=True)
    action = Column(String(20), nullable=False)  # JOB_CREATE / JOB_RENEW / PURCHASE
    amount = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    note = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, server_default=func.now())

    account = relationship("CreditAccount", back_populates="history")
