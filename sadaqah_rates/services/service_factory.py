from datetime import timedelta

from sadaqah_rates.cache.rate_cache import RateCache
from sadaqah_rates.config.database import DatabaseManager
from sadaqah_rates.config.settings import Settings, get_settings
from sadaqah_rates.monitoring.logger import get_production_logger, setup_logging
from sadaqah_rates.providers import (
    CoinGeckoProvider,
    CryptoCompareProvider,
    ExchangeRateAPIProvider,
    FrankfurterProvider,
    GoldAPIProvider,
    GoldPriceOrgProvider,
    RateProvider,
)
from sadaqah_rates.repositories.rate_attempts import RateAttemptRepository
from sadaqah_rates.services.circuit_breaker import CircuitBreaker
from sadaqah_rates.services.currency_types import CurrencyClassifier, CurrencyType
from sadaqah_rates.services.exchange_rate_service import ExchangeRateService
from sadaqah_rates.services.value_converter import ValueConverter


class ServiceFactory:
    """Factory to create and wire up all services with dependencies"""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        setup_logging(self.settings.LOG_DIRECTORY, self.settings.LOG_LEVEL)
        self.production_logger = get_production_logger()

        # Core infrastructure
        self.rate_cache = RateCache.from_url(
            self.settings.REDIS_URL,
            ttl=timedelta(seconds=self.settings.RATE_CACHE_TTL),
            retention=timedelta(seconds=self.settings.CACHE_RETENTION),
        )
        self.db_manager = DatabaseManager(database_url=self.settings.DATABASE_URL)

        self.providers: dict[CurrencyType, list[RateProvider]] = {}
        self.circuit_breakers: dict[str, CircuitBreaker] = {}
        self.exchange_rate_service: ExchangeRateService | None = None
        self.value_converter = ValueConverter()

    def create_providers(self) -> dict[CurrencyType, list[RateProvider]]:
        """Fallback chain per currency type, primary first"""
        timeout = self.settings.PROVIDER_TIMEOUT
        return {
            CurrencyType.FIAT: [
                ExchangeRateAPIProvider(timeout=timeout),
                FrankfurterProvider(timeout=timeout),
            ],
            CurrencyType.CRYPTO: [
                CoinGeckoProvider(api_key=self.settings.COINGECKO_API_KEY, timeout=timeout),
                CryptoCompareProvider(api_key=self.settings.CRYPTOCOMPARE_API_KEY, timeout=timeout),
            ],
            CurrencyType.COMMODITY: [
                GoldAPIProvider(api_key=self.settings.GOLD_API_TOKEN, timeout=timeout),
                GoldPriceOrgProvider(timeout=timeout),
            ],
        }

    def create_exchange_rate_service(self) -> ExchangeRateService:
        """Create fully configured rate service with all providers and circuit breakers"""
        if self.exchange_rate_service is not None:
            return self.exchange_rate_service

        # Step 1: Create providers
        self.providers = self.create_providers()

        # Step 2: Create circuit breakers for each provider
        self.circuit_breakers = {
            provider.name: CircuitBreaker(
                provider_name=provider.name,
                failure_threshold=self.settings.CB_FAILURE_THRESHOLD,
                recovery_timeout=self.settings.CB_RECOVERY_TIMEOUT,
                success_threshold=self.settings.CB_SUCCESS_THRESHOLD,
            )
            for chain in self.providers.values()
            for provider in chain
        }

        # Step 3: Attempt tracking
        self.db_manager.create_tables()
        attempt_repository = RateAttemptRepository(self.db_manager)

        # Step 4: Create rate service
        self.exchange_rate_service = ExchangeRateService(
            cache=self.rate_cache,
            providers=self.providers,
            circuit_breakers=self.circuit_breakers,
            attempt_repository=attempt_repository,
            classifier=CurrencyClassifier(),
            base_currency=self.settings.BASE_CURRENCY,
            gold_code=self.settings.GOLD_CODE,
            provider_timeout=self.settings.PROVIDER_TIMEOUT,
            stale_fallback_max_age=timedelta(seconds=self.settings.STALE_FALLBACK_MAX_AGE),
            not_found_cooldown=timedelta(seconds=self.settings.NOT_FOUND_COOLDOWN),
        )

        self.production_logger.log_service_lifecycle(
            f"Exchange rate service created with {len(self.circuit_breakers)} providers",
            provider_count=len(self.circuit_breakers),
        )
        return self.exchange_rate_service

    async def get_health_status(self) -> dict:
        """Get health status of all services"""
        if not self.exchange_rate_service:
            return {"status": "not_initialized"}

        status = await self.exchange_rate_service.get_health_status()
        status["database_status"] = self.db_manager.health_check()
        return status

    async def cleanup(self):
        """Clean up all services"""
        if self.exchange_rate_service:
            await self.exchange_rate_service.close()
        else:
            await self.rate_cache.close()
        self.db_manager.close()

        self.production_logger.log_service_lifecycle("Services cleaned up successfully")
