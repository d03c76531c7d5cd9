import logging
from flask import current_app
from models import db
from models.user import ROLE_ADMIN, ROLE_USER, Role
from models.payment import PaymentProvider

logger = logging.getLogger(__name__)

DEFAULT_ROLES = [ROLE_USER, ROLE_ADMIN]

PROVIDER_NAMES = {"cashfree": "Cashfree Payments"}

def seed_roles():
    existing = {r.name for r in Role.query.all()}
    for name in DEFAULT_ROLES:
        if name not in existing:
            db.session.add(Role(name=name))
    db.session.commit()

def seed_payment_provider(provider_id=None):
    """Ensure one active default provider exists. Safe to run repeatedly."""
    provider_id = provider_id or current_app.config.get("DEFAULT_PAYMENT_PROVIDER", "cashfree")
    provider = PaymentProvider.query.filter_by(provider_id=provider_id).first()
    if provider is None:
        provider = PaymentProvider(
            provider_id=provider_id,
            provider_name=PROVIDER_NAMES.get(provider_id, provider_id.title()),
            supported_currencies=[current_app.config.get("PAYMENT_CURRENCY", "INR")],
        )
        db.session.add(provider)
        logger.info("Seeded payment provider %s", provider_id)

    if not PaymentProvider.query.filter_by(is_default=True, is_active=True).first():
        provider.is_active = True
        provider.is_default = True
    db.session.commit()
    return provider
