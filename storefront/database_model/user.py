import uuid
from datetime import datetime

from sqlalchemy import Column, String, DateTime
from ..core.database import Base

class User(Base):
    __tablename__ = "users"

    # Either a generated UUID or the identifier issued by the auth provider
    id = Column(String(128), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    mobile_number = Column(String(32), nullable=True)
    referral_code = Column(String(16), unique=True, index=True, nullable=False)
    referred_by = Column(String(16), nullable=True)  # referral code used at signup
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, referral_code={self.referral_code})>"
