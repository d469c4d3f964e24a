from investorpedia.middleware.request_id import init_request_id_middleware

__all__ = ["init_request_id_middleware"]
