from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
	REDIS_URL: str = 'redis://localhost:6379'
	DATABASE_URL: str = 'sqlite:///./sadaqah_rates.db'

	BASE_CURRENCY: str = 'USD'
	GOLD_CODE: str = 'XAU'

	# Seconds
	RATE_CACHE_TTL: int = 3600
	CACHE_RETENTION: int = 7 * 24 * 3600
	STALE_FALLBACK_MAX_AGE: int = 24 * 3600
	NOT_FOUND_COOLDOWN: int = 3600
	PROVIDER_TIMEOUT: float = 10.0

	# Circuit breakers
	CB_FAILURE_THRESHOLD: int = 5
	CB_RECOVERY_TIMEOUT: int = 60
	CB_SUCCESS_THRESHOLD: int = 2

	GOLD_API_TOKEN: str = ''
	COINGECKO_API_KEY: str = ''
	CRYPTOCOMPARE_API_KEY: str = ''

	# Logging
	LOG_DIRECTORY: str = 'logs'
	LOG_LEVEL: str = 'INFO'

	model_config = SettingsConfigDict(env_file='.env', case_sensitive=False, extra='ignore')


@lru_cache
def get_settings() -> Settings:
	return Settings()
