"""Middleware modules for the ops console API."""

from opsconsole.middleware.request_id import REQUEST_ID_HEADER, RequestIDMiddleware

__all__ = ["RequestIDMiddleware", "REQUEST_ID_HEADER"]
