import uuid

from flask import g, request

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128


def init_request_id_middleware(app):
    """
    Attaches a correlation ID to every request and echoes it back.
    A caller-supplied ID is kept unless it is unreasonably long.
    """

    @app.before_request
    def assign_request_id():
        incoming = request.headers.get(REQUEST_ID_HEADER, "").strip()
        if not incoming or len(incoming) > MAX_REQUEST_ID_LENGTH:
            incoming = uuid.uuid4().hex
        g.request_id = incoming

    @app.after_request
    def add_request_id_header(response):
        response.headers[REQUEST_ID_HEADER] = g.get("request_id", "")
        return response
