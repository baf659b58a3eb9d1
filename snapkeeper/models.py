from datetime import datetime

from sqlalchemy import create_engine, Column, Integer, String, Text, DateTime, Boolean
from sqlalchemy.orm import declarative_base, sessionmaker


Base = declarative_base()


class RunRecord(Base):
    """Backup run history and logs"""
    __tablename__ = 'backup_runs'

    id = Column(Integer, primary_key=True)
    run_name = Column(String(255), nullable=False)
    backup_type = Column(String(20), nullable=False)  # full, incr, snapshot
    status = Column(String(20), nullable=False)  # running, success, partial, failed
    forced = Column(Boolean, default=False, nullable=False)
    started_at = Column(DateTime, default=datetime.now, nullable=False)
    completed_at = Column(DateTime)
    error_count = Column(Integer, default=0, nullable=False)
    error_message = Column(Text)
    logs = Column(Text)  # Run log lines

    def __repr__(self):
        return f'<RunRecord {self.run_name} status={self.status}>'


def init_database(url: str):
    """
    Create the history tables if needed.

    Args:
        url: SQLAlchemy database URL

    Returns:
        Session factory bound to the database
    """
    engine = create_engine(url)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


def recent_runs(session_factory, limit: int = 10) -> list:
    """Most recent run records, newest first."""
    with session_factory() as session:
        return (
            session.query(RunRecord)
            .order_by(RunRecord.started_at.desc(), RunRecord.id.desc())
            .limit(limit)
            .all()
        )
