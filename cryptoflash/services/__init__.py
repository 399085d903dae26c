"""Сервисы CryptoFlash."""
