"""Schedule store model definitions."""

from sqlalchemy import Boolean, Column, Date, Index, Integer, String, Time
from careslot.database import Base


class RecurringWindow(Base):
    """A doctor's standing weekly availability window."""
    __tablename__ = "recurring_windows"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, nullable=False)
    day_of_week = Column(Integer, nullable=False)  # Monday = 0
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index('idx_recurring_windows_doctor_day', 'doctor_id', 'day_of_week'),
    )


class ScheduleException(Base):
    """A date-specific override of a doctor's recurring windows."""
    __tablename__ = "schedule_exceptions"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=True)
    end_time = Column(Time, nullable=True)
    is_unavailable = Column(Boolean, nullable=False, default=True)
    reason = Column(String, nullable=True)

    __table_args__ = (
        Index('idx_schedule_exceptions_doctor_date', 'doctor_id', 'date'),
    )

    @property
    def is_full_day(self) -> bool:
        return self.start_time is None and self.end_time is None
