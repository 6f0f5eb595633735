#rfq_desk/policies/quote_policies.py
from __future__ import annotations

from rfq_desk.core.errors import PermissionDeniedError
from rfq_desk.core.quote_statuses import QuoteStatus


def enforce_permanent_delete_allowed(quote_id: str, status: str) -> None:
    """
    Permanent deletion is only allowed from the trash.
    """
    if status != QuoteStatus.TRASHED.value:
        raise PermissionDeniedError(
            f"Quote {quote_id} must be in the trash before it can be deleted permanently."
        )
