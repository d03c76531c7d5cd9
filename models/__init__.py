from .db import db
from .user import User, Role, UserSession, user_roles
from .audit_log import AuditLog
from .pod import Pod
from .booking import Booking, AccessCode
from .payment import (
    PaymentProvider,
    PaymentOrder,
    PaymentTransaction,
    PaymentRefund,
    PaymentLink,
    PaymentWebhookEvent,
)
