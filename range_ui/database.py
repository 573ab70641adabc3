"""Range store bootstrap with a guard against incompatible SQLAlchemy versions."""

from importlib import metadata
from pathlib import Path
from typing import List

from packaging.version import Version
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from collector.config import DATABASE_FILE
from collector.models import AddressRange
from range_ui.models import Base, RangeRecord

DB_PATH = Path.cwd() / DATABASE_FILE
DATABASE_URL = f"sqlite:///{DB_PATH}"


def _require_sqlalchemy_version(min_version: str = "2.0.36") -> None:
    """
    Prevents startup with an older SQLAlchemy that triggers the Python 3.13
    TypingOnly assertion. If the installed version is too old, raise a clear
    error telling the user to upgrade.
    """

    installed = Version(metadata.version("sqlalchemy"))
    required = Version(min_version)

    if installed < required:
        raise RuntimeError(
            "SQLAlchemy %s is too old for Python 3.13. "
            "Please run 'pip install --upgrade sqlalchemy' "
            "to install version %s or newer."
            % (installed, required)
        )


# Abort early with a clear message before any engine is built
_require_sqlalchemy_version()


def create_session_factory(database_url: str = DATABASE_URL) -> sessionmaker:
    """Engine + session factory; tables are created if they do not exist."""
    kwargs = {"connect_args": {"check_same_thread": False}}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection so every session sees the same in-memory DB
        kwargs["poolclass"] = StaticPool
    engine = create_engine(database_url, echo=False, **kwargs)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine)


def load_ranges(db: Session) -> List[AddressRange]:
    rows = db.query(RangeRecord).order_by(RangeRecord.position, RangeRecord.created).all()
    return [row.to_range() for row in rows]


def save_range(db: Session, rng: AddressRange) -> RangeRecord:
    row = db.get(RangeRecord, rng.id)
    if row is None:
        count = db.query(RangeRecord).count()
        row = RangeRecord(id=rng.id, position=count)
        db.add(row)
    row.apply(rng)
    db.commit()
    return row


def delete_range(db: Session, range_id: str) -> bool:
    row = db.get(RangeRecord, range_id)
    if row is None:
        return False
    db.delete(row)
    db.commit()
    return True


def replace_ranges(db: Session, ranges: List[AddressRange]) -> None:
    db.query(RangeRecord).delete()
    for position, rng in enumerate(ranges):
        row = RangeRecord(id=rng.id, position=position)
        row.apply(rng)
        db.add(row)
    db.commit()
