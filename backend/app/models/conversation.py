from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..database import Base
from ..utils.dates import utcnow


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("institute_id", "user_id", name="uq_conversations_institute_user"),
    )

    id = Column(Integer, primary_key=True, index=True)
    institute_id = Column(Integer, ForeignKey("institutes.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    institute_unread_count = Column(Integer, nullable=False, default=0)
    user_unread_count = Column(Integer, nullable=False, default=0)
    # Plain pointer; messages already reference conversations.
    last_message_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow, server_default=func.now())
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    institute = relationship("Institute")
    user = relationship("User")
    last_message = relationship(
        "Message",
        primaryjoin="foreign(Conversation.last_message_id) == Message.id",
        viewonly=True,
        uselist=False,
    )
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        foreign_keys="Message.conversation_id",
    )


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_type = Column(String(20), nullable=False)  # USER / INSTITUTE
    sender_id = Column(Integer, nullable=False)
    content = Column(Text, nullable=True)
    media_path = Column(String(500), nullable=True)
    media_type = Column(String(10), nullable=True)  # IMAGE / VIDEO / PDF
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, server_default=func.now())

    conversation = relationship("Conversation", back_populates="messages", foreign_keys=[conversation_id])
