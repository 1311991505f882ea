from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta

from sqlalchemy import case, delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from sadaqah_rates.cache.rate_cache import utc_now
from sadaqah_rates.config.database import DatabaseManager
from sadaqah_rates.database.models import APICallLog, CurrencyRateAttempt
from sadaqah_rates.monitoring.logger import get_production_logger
from sadaqah_rates.providers.base import ProviderRates


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo
    return value if value.tzinfo else value.replace(tzinfo=UTC)


class RateAttemptRepository:
    """Per-currency fetch attempt tracking and provider call logging.

    Bookkeeping only: a database failure is logged and never fails a rate lookup.
    """

    def __init__(self, db_manager: DatabaseManager, clock: Callable[[], datetime] = utc_now):
        self.db_manager = db_manager
        self.clock = clock
        self.production_logger = get_production_logger()

    def get_by_codes(self, codes: Iterable[str]) -> dict[str, CurrencyRateAttempt]:
        codes = [code.upper() for code in codes]
        if not codes:
            return {}
        with self.db_manager.get_session() as session:
            records = session.scalars(
                select(CurrencyRateAttempt).where(CurrencyRateAttempt.currency_code.in_(codes))
            ).all()
            session.expunge_all()
        return {record.currency_code: record for record in records}

    def codes_in_cooldown(self, codes: Iterable[str], cooldown: timedelta) -> set[str]:
        """Codes that no provider found within the last `cooldown`"""
        if cooldown <= timedelta(0):
            return set()
        try:
            records = self.get_by_codes(codes)
        except SQLAlchemyError as e:
            self.production_logger.log_database_operation("read_attempts", success=False, error_message=str(e))
            return set()

        now = self.clock()
        return {
            code for code, record in records.items()
            if not record.found and now - _as_utc(record.last_attempt_at) < cooldown
        }

    def record_success(self, rates: dict[str, float], source_api: str):
        self._record({code: (rate, source_api) for code, rate in rates.items()})

    def record_not_found(self, codes: Iterable[str]):
        self._record({code: None for code in codes})

    def _record(self, outcomes: dict[str, tuple[float, str] | None]):
        if not outcomes:
            return
        now = self.clock()
        try:
            with self.db_manager.get_session() as session:
                existing = {
                    record.currency_code: record
                    for record in session.scalars(
                        select(CurrencyRateAttempt).where(
                            CurrencyRateAttempt.currency_code.in_(list(outcomes))
                        )
                    )
                }
                for code, outcome in outcomes.items():
                    record = existing.get(code)
                    if record is None:
                        record = CurrencyRateAttempt(currency_code=code, attempt_count=0)
                        session.add(record)

                    record.last_attempt_at = now
                    record.attempt_count += 1
                    if outcome is None:
                        record.found = False
                    else:
                        record.usd_value, record.source_api = outcome
                        record.last_success_at = now
                        record.found = True
        except SQLAlchemyError as e:
            self.production_logger.log_database_operation(
                "record_attempts", success=False, error_message=str(e), codes=sorted(outcomes)
            )

    def log_api_call(self, requested_codes: list[str], result: ProviderRates):
        """Store one row per provider invocation"""
        try:
            with self.db_manager.get_session() as session:
                session.add(APICallLog(
                    provider_name=result.provider_name,
                    requested_codes=",".join(requested_codes),
                    resolved_count=len(result.rates),
                    http_status_code=result.http_status_code,
                    response_time_ms=result.response_time_ms,
                    was_successful=result.reachable and result.is_successful,
                    error_message=result.error_message,
                    called_at=self.clock(),
                ))
        except SQLAlchemyError as e:
            self.production_logger.log_database_operation(
                "log_api_call", success=False, error_message=str(e), provider=result.provider_name
            )

    def get_stats(self) -> dict[str, int]:
        with self.db_manager.get_session() as session:
            total = session.scalar(select(func.count(CurrencyRateAttempt.id)))
            found = session.scalar(
                select(func.count(CurrencyRateAttempt.id)).where(CurrencyRateAttempt.found.is_(True))
            )
            with_value = session.scalar(
                select(func.count(CurrencyRateAttempt.id)).where(CurrencyRateAttempt.usd_value.is_not(None))
            )
        return {
            "total": total or 0,
            "found": found or 0,
            "not_found": (total or 0) - (found or 0),
            "with_cached_value": with_value or 0,
        }

    def get_provider_stats(self, since: datetime) -> dict[str, dict]:
        """Call count, success rate and average latency per provider since `since`"""
        with self.db_manager.get_session() as session:
            rows = session.execute(
                select(
                    APICallLog.provider_name,
                    func.count(APICallLog.id),
                    func.sum(case((APICallLog.was_successful.is_(True), 1), else_=0)),
                    func.avg(APICallLog.response_time_ms),
                )
                .where(APICallLog.called_at >= since)
                .group_by(APICallLog.provider_name)
            ).all()
        return {
            name: {
                "calls": calls,
                "success_rate": round((successes or 0) / calls, 3) if calls else 0.0,
                "avg_response_time_ms": round(avg_ms or 0, 1),
            }
            for name, calls, successes, avg_ms in rows
        }

    def clear(self, codes: Iterable[str] | None = None):
        """Forget attempts for `codes`, or for every code"""
        statement = delete(CurrencyRateAttempt)
        if codes is not None:
            statement = statement.where(CurrencyRateAttempt.currency_code.in_([c.upper() for c in codes]))
        with self.db_manager.get_session() as session:
            session.execute(statement)

    def delete_older_than(self, cutoff: datetime) -> int:
        with self.db_manager.get_session() as session:
            result = session.execute(
                delete(CurrencyRateAttempt).where(CurrencyRateAttempt.last_attempt_at <= cutoff)
            )
            return result.rowcount
