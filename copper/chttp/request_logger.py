"""Middleware that logs the method, path and status code of each request."""

from __future__ import annotations

from typing import Optional

from werkzeug.wrappers import Request, Response

from copper.chttp.handler import Handler, Middleware
from copper.clogger import Logger


class RequestLoggerMiddleware(Middleware):
    """Logs each request's method, path and status code, and the basic-auth user if any."""

    def __init__(self, logger: Logger) -> None:
        self.logger = logger

    def handle(self, next_handler: Handler) -> Handler:
        def handler(request: Request) -> Optional[Response]:
            tags = {"method": request.method, "url": request.path}

            auth = request.authorization
            if auth is not None and auth.type == "basic" and auth.username is not None:
                tags["user"] = auth.username

            response = next_handler(request)
            status_code = 200 if response is None else response.status_code
            tags["statusCode"] = status_code

            self.logger.with_tags(tags).info(f"{request.method} {request.path} {status_code}")
            return response

        return handler