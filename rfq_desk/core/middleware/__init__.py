from rfq_desk.core.middleware.request_id import RequestIdMiddleware

__all__ = ["RequestIdMiddleware"]
