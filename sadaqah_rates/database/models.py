from sqlalchemy import (
    TIMESTAMP,
    Boolean,
    Column,
    Float,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class CurrencyRateAttempt(Base):
    """Last fetch attempt per currency code; drives the not-found cooldown"""
    __tablename__ = "currency_rate_attempts"

    id = Column(Integer, primary_key=True)
    currency_code = Column(String(10), nullable=False, unique=True, index=True)
    last_attempt_at = Column(TIMESTAMP(timezone=True), nullable=False)
    last_success_at = Column(TIMESTAMP(timezone=True), nullable=True)
    usd_value = Column(Float, nullable=True)
    source_api = Column(String(50), nullable=True)
    found = Column(Boolean, default=False, nullable=False)
    attempt_count = Column(Integer, default=0, nullable=False)

    def __repr__(self):
        status = "FOUND" if self.found else "NOT_FOUND"
        return f"<CurrencyRateAttempt({self.currency_code}, {status}, attempts={self.attempt_count})>"


class APICallLog(Base):
    """One row per provider invocation, for provider performance monitoring"""
    __tablename__ = "api_call_logs"

    id = Column(Integer, primary_key=True)
    provider_name = Column(String(50), nullable=False, index=True)
    requested_codes = Column(Text, nullable=False)
    resolved_count = Column(Integer, default=0, nullable=False)
    http_status_code = Column(Integer, nullable=True)
    response_time_ms = Column(Integer, nullable=False)
    was_successful = Column(Boolean, nullable=False)
    error_message = Column(Text, nullable=True)
    called_at = Column(TIMESTAMP(timezone=True), default=func.now(), nullable=False)

    def __repr__(self):
        status = "SUCCESS" if self.was_successful else "FAILED"
        return f"<APICallLog({self.provider_name}, {status}, {self.response_time_ms}ms)>"
