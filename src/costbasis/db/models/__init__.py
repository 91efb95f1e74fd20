from costbasis.db.models.price_cache import DailyPriceCache

__all__ = [
    "DailyPriceCache",
]
