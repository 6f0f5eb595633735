# import every model so Base.metadata is complete
from rfq_desk.models.crm_order import CrmOrderRecord  # noqa: F401
from rfq_desk.models.quote import QuoteRecord  # noqa: F401
