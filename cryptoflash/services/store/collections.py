"""Имена коллекций удалённого хранилища."""

USERS = "users"
ORDERS = "orders"
PORTFOLIOS = "portfolios"

ORDER_STATUS_APPROVED = "approved"
