from sqlalchemy import BigInteger, Column, DateTime, Enum, String
from sqlalchemy.orm import declarative_base

from media_transfer.core.states import SessionStatus
from media_transfer.utils.clock import utcnow

Base = declarative_base()

class UploadSession(Base):
    __tablename__ = "upload_sessions"
    id = Column(String(32), primary_key=True, index=True)
    filename = Column(String, nullable=False)
    mime_type = Column(String, nullable=False)
    expected_size = Column(BigInteger, nullable=False)
    bytes_received = Column(BigInteger, nullable=False, default=0)
    storage_handle = Column(String, nullable=False, unique=True, index=True)
    status = Column(Enum(SessionStatus, native_enum=False, length=16), nullable=False, index=True,
                    default=SessionStatus.IN_PROGRESS)
    final_path = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    last_updated_at = Column(DateTime, nullable=False, default=utcnow, index=True)
