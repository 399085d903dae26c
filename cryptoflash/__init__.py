"""CryptoFlash: слой согласованности данных для дашборда котировок и портфеля."""

__version__ = "0.3.0"
