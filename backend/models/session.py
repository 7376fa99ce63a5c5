"""Server-side session model."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from database import Base
from utils.clock import utcnow


class UserSession(Base):
    """
    One authenticated browser session.

    The ``token`` is the cookie value: 32 random bytes, hex-encoded. A session
    is valid only while ``expires_at`` is in the future and the owning user
    is active. The provider tokens are kept for delegated downstream calls.
    """

    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    token = Column(String(64), unique=True, nullable=False, index=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    last_activity = Column(DateTime, default=utcnow, nullable=True)

    user = relationship("User", lazy="raise")

    def __repr__(self):
        return f"<UserSession user={self.user_id} expires={self.expires_at}>"
