from dataclasses import dataclass

from .config import Settings
from ..domain.ports.persistence import PersistenceGateway
from ..domain.pricing import PriceCatalog
from ..infrastructure.identity.jwt_identity import JwtIdentityProvider
from ..services.billing_reconciler import BillingReconciler
from ..services.email_service import EmailService
from ..services.event_dispatcher import EventDispatcher
from ..services.password_reset_service import PasswordResetService
from ..services.rate_limiter import AdmissionPolicy
from ..services.stripe_service import StripeService
from ..services.subscription_service import SubscriptionService


@dataclass(slots=True)
class ApplicationContainer:
    """Dependency registry shared across the FastAPI application lifecycle."""

    settings: Settings
    persistence: PersistenceGateway
    identity: JwtIdentityProvider
    price_catalog: PriceCatalog
    stripe_service: StripeService
    subscription_service: SubscriptionService
    billing_reconciler: BillingReconciler
    password_reset_service: PasswordResetService
    email_service: EmailService
    event_dispatcher: EventDispatcher
    coupon_rate_limiter: AdmissionPolicy
