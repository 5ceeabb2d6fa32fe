"""
Model import hook.

Importing this module ensures all SQLAlchemy models are registered on Base.metadata.
"""

from __future__ import annotations

# Import User first - other models have relationships to User
from pocket_ledger.modules.identity.models import User  # noqa: F401

from pocket_ledger.modules.assets.models import Asset  # noqa: F401
from pocket_ledger.modules.debts.models import Debt, Payment  # noqa: F401
from pocket_ledger.modules.expenses.models import Expense  # noqa: F401
