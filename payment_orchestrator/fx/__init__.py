"""FX conversion: rates, conversions and quotes."""
from .providers import ExchangeRateApiProvider, FxRateProvider, StaticRateProvider
from .service import FxService, default_fx_providers, round_minor
from .types import ConversionResult, FxProviderRates, FxQuote, FxRate

__all__ = [
    "ConversionResult",
    "ExchangeRateApiProvider",
    "FxProviderRates",
    "FxQuote",
    "FxRate",
    "FxRateProvider",
    "FxService",
    "StaticRateProvider",
    "default_fx_providers",
    "round_minor",
]
