"""
SQLAlchemy ORM models package.

All models are imported here so that Base.metadata knows every table before
create_all runs, and other modules can import from payrail.models directly.
"""

from payrail.models.user import User, UserType  # noqa: F401
from payrail.models.merchant_profile import MerchantProfile, MerchantPlan  # noqa: F401
from payrail.models.transaction import (  # noqa: F401
    Transaction,
    TransactionStatus,
    TransactionType,
)
from payrail.models.provider_config import ProviderConfig  # noqa: F401
from payrail.models.audit_log import AdminAuditLog  # noqa: F401
