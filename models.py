# models.py
from sqlalchemy import Column, Integer, String, JSON
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Record(Base):
    """One document of the key-value store, addressed by a slash path."""

    __tablename__ = "records"

    key = Column(String(255), primary_key=True)
    data = Column(JSON, nullable=False, default=dict)

    # bumped on every UPDATE; a stale revision makes the flush fail
    revision = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": revision}
