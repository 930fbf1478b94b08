# Models package — import all models here so Alembic can discover them.

from changeworks.models.organization import Organization  # noqa: F401
from changeworks.models.donor import Donor  # noqa: F401
from changeworks.models.package import Package  # noqa: F401
from changeworks.models.subscription import (  # noqa: F401
    Subscription,
    SubscriptionTransaction,
)
from changeworks.models.transaction import SaveTrRecord  # noqa: F401
from changeworks.models.stripe_event import StripeEvent  # noqa: F401
