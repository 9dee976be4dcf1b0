from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from appointment_service.core import config


def _connect_args(url: str) -> dict:
    # Route handlers run in a threadpool, so sqlite connections cross threads.
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    config.DATABASE_URL,
    connect_args=_connect_args(config.DATABASE_URL),
    pool_pre_ping=True,
    echo=config.SQL_ECHO,
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False

OVERLAP_CONSTRAINT_NAME = 'appointments_no_scheduled_overlap'


def ensure_appointment_schema(bind=None) -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        bind = bind or engine
        inspector = inspect(bind)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('reschedule_count', 'ALTER TABLE appointments ADD COLUMN reschedule_count INTEGER DEFAULT 0'),
            ('notes', 'ALTER TABLE appointments ADD COLUMN notes TEXT'),
            ('version', 'ALTER TABLE appointments ADD COLUMN version INTEGER DEFAULT 1'),
        ]

        with bind.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_doctor_slot ON appointments(doctor_id, slot_start)')
            )

            if connection.dialect.name == 'postgresql':
                _ensure_overlap_constraint(connection)

        _appointment_schema_checked = True


def _ensure_overlap_constraint(connection) -> None:
    exists = connection.execute(
        text('SELECT 1 FROM pg_constraint WHERE conname = :name'),
        {'name': OVERLAP_CONSTRAINT_NAME},
    ).first()
    if exists:
        return

    connection.execute(text('CREATE EXTENSION IF NOT EXISTS btree_gist'))
    connection.execute(
        text(
            f'ALTER TABLE appointments ADD CONSTRAINT {OVERLAP_CONSTRAINT_NAME} '
            "EXCLUDE USING gist (doctor_id WITH =, tsrange(slot_start, slot_end, '[)') WITH &&) "
            "WHERE (status = 'SCHEDULED')"
        )
    )
