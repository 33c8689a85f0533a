from app.db.models.core import PremiumUser, RegisteredUser, UsageCounter, UsageEvent, UsageTotal

__all__ = ["PremiumUser", "RegisteredUser", "UsageCounter", "UsageEvent", "UsageTotal"]
