from . import carts
from . import cron
from . import stores

__all__ = [
    "carts",
    "cron",
    "stores",
]
