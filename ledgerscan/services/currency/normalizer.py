"""
Currency normalization into a tenant's home currency.

Conversion never fails: when no rate is available the amount is returned
unchanged at rate 1 with a warning for the caller to surface.
"""

from datetime import date
from typing import Callable

from loguru import logger

from ...core.config import Settings, settings as default_settings
from ...models.extraction import ConversionResult
from .fx_cache import FxRateCache
from .providers import RateProvider, build_rate_provider


class CurrencyNormalizer:
    """
    Usage:
        cache = FxRateCache(ttl_seconds=settings.fx_cache_ttl_seconds)
        normalizer = CurrencyNormalizer(build_rate_provider(settings), cache)
        result = await normalizer.convert(100, "EUR", "USD")

    The cache is passed in so several normalizers (one per worker) can share it.
    """

    def __init__(self, provider: RateProvider, cache: FxRateCache, today: Callable[[], date] = date.today):
        self.provider = provider
        self.cache = cache
        self.today = today

    @classmethod
    def from_settings(cls, settings: Settings | None = None, cache: FxRateCache | None = None):
        settings = settings or default_settings
        return cls(
            provider=build_rate_provider(settings),
            cache=cache or FxRateCache(ttl_seconds=settings.fx_cache_ttl_seconds),
        )

    async def convert(self, amount: float, from_code: str, to_code: str) -> ConversionResult:
        """
        Convert ``amount`` from one currency to another.

        Args:
            amount: Amount in ``from_code``
            from_code: ISO 4217 source currency
            to_code: ISO 4217 target currency

        Returns:
            ConversionResult with the amount rounded to cents
        """
        from_code = from_code.upper()
        to_code = to_code.upper()
        fx_date = self.today().isoformat()

        if from_code == to_code:
            return ConversionResult(normalized_amount=amount, fx_rate=1.0, fx_date=fx_date)

        try:
            rates = await self.rates_for(from_code)
        except Exception as e:
            logger.warning(
                "FX rate fetch failed, keeping original amount",
                provider=self.provider.name, base=from_code, target=to_code, error=str(e),
            )
            return self._degraded(amount, fx_date, f"Currency conversion {from_code}->{to_code} failed: {e}")

        rate = rates.get(to_code)
        if not rate:
            logger.warning("FX rate missing, keeping original amount", base=from_code, target=to_code)
            return self._degraded(amount, fx_date, f"No exchange rate for {from_code}->{to_code}")

        return ConversionResult(
            normalized_amount=round(amount * rate, 2),
            fx_rate=rate,
            fx_date=fx_date,
        )

    async def rates_for(self, base: str) -> dict[str, float]:
        rates = self.cache.get(base)
        if rates is not None:
            logger.debug("FX cache hit", base=base)
            return rates

        logger.debug("FX cache miss, fetching", base=base, provider=self.provider.name)
        rates = await self.provider.fetch_rates(base)
        self.cache.set(base, rates)
        return rates

    async def supported_currencies(self, base: str = "USD") -> list[str]:
        """Currency codes the provider quotes against ``base``; empty if unavailable"""
        try:
            rates = await self.rates_for(base.upper())
        except Exception as e:
            logger.warning("Could not list supported currencies", base=base, error=str(e))
            return []
        return sorted(rates)

    @staticmethod
    def _degraded(amount: float, fx_date: str, warning: str) -> ConversionResult:
        return ConversionResult(normalized_amount=amount, fx_rate=1.0, fx_date=fx_date, warning=warning)
