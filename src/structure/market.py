"""
Market type detection and symbol normalisation.
"""

from structure.models import MarketType


FIAT_CURRENCIES = frozenset({
    # Major currencies
    "USD", "EUR", "GBP", "JPY", "AUD", "CAD", "CHF", "NZD",
    # Asia
    "CNY", "HKD", "SGD", "INR", "KRW", "TWD", "THB", "MYR", "IDR", "PHP",
    "VND", "PKR", "BDT",
    # Middle East & Africa
    "SAR", "AED", "QAR", "KWD", "BHD", "OMR", "ILS", "EGP", "ZAR", "NGN",
    "KES", "GHS", "MAD",
    # Latin America
    "BRL", "MXN", "ARS", "CLP", "COP", "PEN",
    # Europe (non-EUR)
    "NOK", "SEK", "DKK", "PLN", "CZK", "HUF", "RON", "BGN", "TRY", "RUB",
    "UAH", "ISK",
})

COMMODITY_PAIRS = frozenset({
    "XAUUSD", "XAGUSD", "XPTUSD", "XPDUSD",
    "XAUEUR", "XAGEUR", "XAUGBP", "XAUCHF",
    "BCOUSD", "WTOUSD",
})

CRYPTO_QUOTE_ASSETS = (
    # Stablecoins
    "USDT", "USDC", "BUSD", "FDUSD", "TUSD", "DAI",
    # Major crypto quote assets
    "BTC", "ETH", "BNB",
)

KNOWN_CRYPTO_ASSETS = frozenset({
    "BTC", "ETH", "BNB", "SOL", "XRP", "ADA", "DOGE", "TON", "TRX", "DOT",
    "AVAX", "LINK", "MATIC", "LTC", "BCH", "ATOM", "UNI", "NEAR", "APT",
    "ARB", "OP", "SUI", "PEPE", "SHIB",
})

DEFAULT_QUOTE_ASSET = "USDT"


def _clean(symbol: str) -> str:
    return symbol.strip().upper().replace("/", "").replace("-", "")


def detect_market_type(symbol: str) -> MarketType:
    """
    Detect market type from symbol.

    Six-letter currency pairs and metal/energy pairs are forex, symbols quoted
    in a crypto asset or well-known coins are crypto, everything else is a stock.
    """
    symbol = _clean(symbol)

    if len(symbol) == 6 and symbol.isalpha():
        if symbol[:3] in FIAT_CURRENCIES and symbol[3:] in FIAT_CURRENCIES:
            return MarketType.FOREX

    if symbol in COMMODITY_PAIRS:
        return MarketType.FOREX

    for quote in CRYPTO_QUOTE_ASSETS:
        if len(symbol) > len(quote) and symbol.endswith(quote):
            return MarketType.CRYPTO

    if symbol in KNOWN_CRYPTO_ASSETS:
        return MarketType.CRYPTO

    return MarketType.STOCK


def normalize_crypto_symbol(symbol: str) -> str:
    """
    Exchange symbol for a crypto asset.

    Examples:
        "btc" -> "BTCUSDT", "eth/btc" -> "ETHBTC", "SOL-USDT" -> "SOLUSDT"
    """
    symbol = _clean(symbol)
    for quote in CRYPTO_QUOTE_ASSETS:
        if len(symbol) > len(quote) and symbol.endswith(quote):
            return symbol
    return symbol + DEFAULT_QUOTE_ASSET
