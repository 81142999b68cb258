from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from media_transfer import models
from media_transfer.core.states import SessionStatus, check_status_change


def get_session(db: Session, upload_id: str) -> Optional[models.UploadSession]:
    return db.get(models.UploadSession, upload_id)


def get_session_by_handle(db: Session, storage_handle: str) -> Optional[models.UploadSession]:
    return db.query(models.UploadSession).filter(models.UploadSession.storage_handle == storage_handle).first()


def list_sessions(db: Session, status: Optional[SessionStatus] = None) -> List[models.UploadSession]:
    query = db.query(models.UploadSession)
    if status is not None:
        query = query.filter(models.UploadSession.status == status)
    return query.order_by(models.UploadSession.created_at.desc()).all()


def create_session(
    db: Session,
    upload_id: str,
    filename: str,
    mime_type: str,
    expected_size: int,
    storage_handle: str,
    now: datetime,
) -> models.UploadSession:
    session = models.UploadSession(
        id=upload_id,
        filename=filename,
        mime_type=mime_type,
        expected_size=expected_size,
        bytes_received=0,
        storage_handle=storage_handle,
        status=SessionStatus.IN_PROGRESS,
        created_at=now,
        last_updated_at=now,
    )
    db.add(session)
    db.commit()
    return session


def update_progress(db: Session, upload_id: str, bytes_received: int, now: datetime) -> Optional[models.UploadSession]:
    session = get_session(db, upload_id)
    if session is None:
        return None
    if not 0 <= bytes_received <= session.expected_size:
        raise ValueError(f"bytes_received {bytes_received} outside 0..{session.expected_size}")
    session.bytes_received = bytes_received
    session.last_updated_at = now
    db.commit()
    return session


def update_status(
    db: Session,
    upload_id: str,
    status: SessionStatus,
    now: datetime,
    final_path: Optional[str] = None,
) -> Optional[models.UploadSession]:
    session = get_session(db, upload_id)
    if session is None:
        return None
    check_status_change(session.status, status)
    session.status = status
    session.last_updated_at = now
    if final_path is not None:
        session.final_path = final_path
    db.commit()
    return session


def find_active(db: Session, idle_cutoff: datetime, exclude_id: Optional[str] = None) -> Optional[models.UploadSession]:
    query = db.query(models.UploadSession).filter(
        models.UploadSession.status == SessionStatus.IN_PROGRESS,
        models.UploadSession.last_updated_at >= idle_cutoff,
    )
    if exclude_id is not None:
        query = query.filter(models.UploadSession.id != exclude_id)
    return query.order_by(models.UploadSession.last_updated_at.desc()).first()


def count_active(db: Session, idle_cutoff: datetime) -> int:
    return db.query(models.UploadSession).filter(
        models.UploadSession.status == SessionStatus.IN_PROGRESS,
        models.UploadSession.last_updated_at >= idle_cutoff,
    ).count()


def count_by_status(db: Session, status: SessionStatus) -> int:
    return db.query(models.UploadSession).filter(models.UploadSession.status == status).count()


def list_older_than(db: Session, cutoff: datetime) -> List[models.UploadSession]:
    return db.query(models.UploadSession).filter(models.UploadSession.last_updated_at < cutoff).all()


def delete_session(db: Session, upload_id: str) -> bool:
    session = get_session(db, upload_id)
    if session is None:
        return False
    db.delete(session)
    db.commit()
    return True
