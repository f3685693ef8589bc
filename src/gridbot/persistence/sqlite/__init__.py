from gridbot.persistence.sqlite.capital_repo import SqliteCapitalRepo
from gridbot.persistence.sqlite.orders_repo import SqliteOrdersRepo
from gridbot.persistence.sqlite.trades_repo import SqliteTradesRepo

__all__ = ["SqliteCapitalRepo", "SqliteTradesRepo", "SqliteOrdersRepo"]
