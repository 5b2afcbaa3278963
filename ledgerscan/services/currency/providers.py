"""
FX rate providers.

Each provider returns the full rate table for a base currency:
``{"USD": 1.0, "EUR": 0.92, ...}`` meaning one unit of base buys that much of
each target. The provider is chosen once by FX_PROVIDER from ``RATE_PROVIDERS``.
"""

import abc

import httpx
from loguru import logger

from ...core.config import Settings
from ...core.errors import ConfigurationError, RateProviderError

REQUEST_TIMEOUT_SECONDS = 10


class RateProvider(abc.ABC):
    name: str = "base"
    default_api_url: str = ""

    def __init__(self, api_url: str | None = None, api_key: str | None = None):
        self.api_url = (api_url or self.default_api_url).rstrip("/")
        self.api_key = api_key

    @classmethod
    def from_settings(cls, settings: Settings) -> "RateProvider":
        return cls(api_url=settings.fx_api_url, api_key=settings.fx_api_key)

    @abc.abstractmethod
    async def fetch_rates(self, base: str) -> dict[str, float]:
        """Fetch the rate table for ``base``; raise on transport or payload errors"""

    async def _get_json(self, url: str, params: dict | None = None) -> dict:
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS) as client:
            resp = await client.get(url, params=params)
            resp.raise_for_status()
            return resp.json()


def _rates_from(payload: dict, key: str) -> dict[str, float]:
    rates = payload.get(key)
    if not isinstance(rates, dict) or not rates:
        raise RateProviderError(f"FX response has no '{key}' table")
    return {code.upper(): float(rate) for code, rate in rates.items()}


class FrankfurterProvider(RateProvider):
    """ECB reference rates, no key required"""

    name = "frankfurter"
    default_api_url = "https://api.frankfurter.app"

    async def fetch_rates(self, base: str) -> dict[str, float]:
        payload = await self._get_json(f"{self.api_url}/latest", params={"from": base})
        rates = _rates_from(payload, "rates")
        rates[base] = 1.0
        return rates


class OpenExchangeRatesProvider(RateProvider):
    """USD-based table on the free plan; other bases are derived as cross rates"""

    name = "openexchangerates"
    default_api_url = "https://openexchangerates.org/api"

    def __init__(self, api_url: str | None = None, api_key: str | None = None):
        if not api_key:
            raise ConfigurationError("FX_PROVIDER=openexchangerates requires FX_API_KEY")
        super().__init__(api_url, api_key)

    async def fetch_rates(self, base: str) -> dict[str, float]:
        payload = await self._get_json(f"{self.api_url}/latest.json", params={"app_id": self.api_key})
        usd_rates = _rates_from(payload, "rates")
        base_rate = usd_rates.get(base)
        if not base_rate:
            raise RateProviderError(f"No USD rate for base currency {base}")
        return {code: rate / base_rate for code, rate in usd_rates.items()}


class ExchangeRateApiProvider(RateProvider):
    name = "exchangerateapi"
    default_api_url = "https://v6.exchangerate-api.com/v6"

    def __init__(self, api_url: str | None = None, api_key: str | None = None):
        if not api_key:
            raise ConfigurationError("FX_PROVIDER=exchangerateapi requires FX_API_KEY")
        super().__init__(api_url, api_key)

    async def fetch_rates(self, base: str) -> dict[str, float]:
        payload = await self._get_json(f"{self.api_url}/{self.api_key}/latest/{base}")
        if payload.get("result") not in (None, "success"):
            raise RateProviderError(f"exchangerate-api error: {payload.get('error-type', 'unknown')}")
        return _rates_from(payload, "conversion_rates")


RATE_PROVIDERS: dict[str, type[RateProvider]] = {
    "frankfurter": FrankfurterProvider,
    "openexchangerates": OpenExchangeRatesProvider,
    "exchangerateapi": ExchangeRateApiProvider,
}

DEFAULT_RATE_PROVIDER = "frankfurter"


def build_rate_provider(settings: Settings) -> RateProvider:
    """Provider named by FX_PROVIDER; missing or unknown names use Frankfurter"""
    name = (settings.fx_provider or DEFAULT_RATE_PROVIDER).strip().lower()
    if name not in RATE_PROVIDERS:
        logger.warning("Unknown FX provider, using frankfurter", provider=name)
        name = DEFAULT_RATE_PROVIDER
    return RATE_PROVIDERS[name].from_settings(settings)
