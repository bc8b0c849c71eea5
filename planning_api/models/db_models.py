import datetime
from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class UserEvents(Base):
    __tablename__ = "user_events"

    username = Column(String, primary_key=True, index=True)
    events_json = Column(Text, nullable=False)  # Ordered list of NormalizedEvent as JSON
    last_updated = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)  # Naive UTC
