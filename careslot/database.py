from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from careslot.core import config


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith('sqlite'):
        connect_args['check_same_thread'] = False
        # Writers queue on the database lock instead of failing fast.
        connect_args['timeout'] = 30
    return create_engine(database_url, connect_args=connect_args)


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=bind,
    )


engine = build_engine(config.DATABASE_URL)

SessionLocal = build_session_factory(engine)

Base = declarative_base()

_schema_lock = Lock()
_checked_engines: set[int] = set()

ACTIVE_STATUS_SQL = "status IN ('pending', 'approved', 'reserved')"


def ensure_ledger_schema(bind: Engine | None = None) -> None:
    """Bring an older ``appointments`` table up to the reservation layout."""
    bind = bind or engine

    if id(bind) in _checked_engines:
        return

    with _schema_lock:
        if id(bind) in _checked_engines:
            return

        inspector = inspect(bind)

        if 'appointments' not in inspector.get_table_names():
            _checked_engines.add(id(bind))
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('kind', "ALTER TABLE appointments ADD COLUMN kind VARCHAR DEFAULT 'appointment'"),
            ('reserved_at', 'ALTER TABLE appointments ADD COLUMN reserved_at TIMESTAMP'),
            ('reserved_by', 'ALTER TABLE appointments ADD COLUMN reserved_by INTEGER'),
            ('blocked_until', 'ALTER TABLE appointments ADD COLUMN blocked_until TIMESTAMP'),
            ('payment_status', "ALTER TABLE appointments ADD COLUMN payment_status VARCHAR DEFAULT 'pending'"),
            ('consultation_fee', 'ALTER TABLE appointments ADD COLUMN consultation_fee NUMERIC(10, 2)'),
            ('session_date', 'ALTER TABLE appointments ADD COLUMN session_date DATE'),
        ]

        with bind.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_doctor_slot '
                    f'ON appointments(doctor_id, appointment_at) WHERE {ACTIVE_STATUS_SQL}'
                )
            )
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_active_elder_session '
                    'ON appointments(elder_id, session_date) '
                    f'WHERE session_date IS NOT NULL AND {ACTIVE_STATUS_SQL}'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_hold_expiry ON appointments(status, blocked_until)')
            )

        _checked_engines.add(id(bind))


def create_schema(bind: Engine | None = None) -> None:
    # Register every model on Base before create_all.
    from careslot.models import appointment, schedule, user  # noqa: F401

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    ensure_ledger_schema(bind)
