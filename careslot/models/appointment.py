"""Appointment ledger model definitions."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Index, Integer, Numeric, String, text
from careslot.database import ACTIVE_STATUS_SQL, Base


class Appointment(Base):
    """A ledger entry: an ad-hoc appointment or a monthly session."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    kind = Column(String, nullable=False, default='appointment')
    requester_id = Column(Integer, nullable=False)
    elder_id = Column(Integer, nullable=True)
    doctor_id = Column(Integer, nullable=False)
    appointment_at = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String, nullable=False)
    reserved_at = Column(DateTime, nullable=True)
    reserved_by = Column(Integer, nullable=True)
    blocked_until = Column(DateTime, nullable=True)
    payment_status = Column(String, nullable=False, default='pending')
    consultation_fee = Column(Numeric(10, 2), nullable=True)
    # Only set for monthly sessions; drives the one-session-per-elder-per-day guard.
    session_date = Column(Date, nullable=True)
    reason = Column(String, nullable=True)
    rejection_reason = Column(String, nullable=True)
    cancellation_reason = Column(String, nullable=True)
    doctor_notes = Column(String, nullable=True)
    meeting_id = Column(String, nullable=True)
    meeting_join_url = Column(String, nullable=True)
    meeting_password = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        Index(
            'uq_appointments_active_doctor_slot',
            'doctor_id',
            'appointment_at',
            unique=True,
            sqlite_where=text(ACTIVE_STATUS_SQL),
            postgresql_where=text(ACTIVE_STATUS_SQL),
        ),
        Index(
            'uq_appointments_active_elder_session',
            'elder_id',
            'session_date',
            unique=True,
            sqlite_where=text(f'session_date IS NOT NULL AND {ACTIVE_STATUS_SQL}'),
            postgresql_where=text(f'session_date IS NOT NULL AND {ACTIVE_STATUS_SQL}'),
        ),
        Index('idx_appointments_hold_expiry', 'status', 'blocked_until'),
        Index('idx_appointments_doctor_time', 'doctor_id', 'appointment_at'),
    )
