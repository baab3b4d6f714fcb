"""Routing of HTTP requests to handlers through middlewares.

A handler takes a :class:`werkzeug.wrappers.Request` and returns a
:class:`werkzeug.wrappers.Response`, or ``None`` for an empty 200 response.
Route paths are templates such as ``/foo/{id}`` or ``/static/{path:.*}``.
"""

from __future__ import annotations

import abc
import re
import traceback
from dataclasses import dataclass
from functools import reduce
from typing import Callable, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from werkzeug.wrappers import Request, Response

from copper.clogger import Logger, new_noop

Handler = Callable[[Request], Optional[Response]]
MiddlewareFunc = Callable[[Handler], Handler]

_ROUTE_PATH_KEY = "copper.route_path"
_URL_PARAMS_KEY = "copper.url_params"

_MATCHER_PLACEHOLDER = "{{matcher}}"
_MATCHER_RE = re.compile(r"\{.*?\}")
_VARIABLE_RE = re.compile(r"\{([^{}:]+)(?::((?:[^{}]|\{[^{}]*\})*))?\}")
_DEFAULT_VARIABLE_PATTERN = "[^/]+"


@dataclass
class Route:
    """A single HTTP route with its path template, methods, handler and middlewares."""

    path: str
    handler: Optional[Handler] = None
    methods: Sequence[str] = ()
    middlewares: Sequence["Middleware"] = ()


class Router(abc.ABC):
    """Groups routes together."""

    @abc.abstractmethod
    def routes(self) -> List[Route]:
        """Return the routes of this router."""


class Middleware(abc.ABC):
    """Wraps a handler to run code before or after it."""

    @abc.abstractmethod
    def handle(self, next_handler: Handler) -> Handler:
        """Return a handler that wraps ``next_handler``."""


class _FuncMiddleware(Middleware):
    def __init__(self, fn: MiddlewareFunc) -> None:
        self._fn = fn

    def handle(self, next_handler: Handler) -> Handler:
        return self._fn(next_handler)


def handle_middleware(fn: MiddlewareFunc) -> Middleware:
    """Return a middleware that runs ``fn`` to wrap handlers."""
    return _FuncMiddleware(fn)


class StaticRouter(Router):
    """A router that returns a fixed list of routes."""

    def __init__(self, routes: Iterable[Route]) -> None:
        self._routes = list(routes)

    def routes(self) -> List[Route]:
        return self._routes


def reverse_routes(routes: List[Route]) -> List[Route]:
    """Reverse ``routes`` in place and return it."""
    routes.reverse()
    return routes


def _priority(route: Route) -> Tuple[int, int]:
    path = _MATCHER_RE.sub(_MATCHER_PLACEHOLDER, route.path)
    parts = [] if path == "/" else path.split("/")
    first_matcher = next(
        (index for index, part in enumerate(parts) if part == _MATCHER_PLACEHOLDER),
        len(parts),
    )
    return (-len(parts), -first_matcher)


def sort_routes(routes: List[Route]) -> None:
    """Sort ``routes`` in place so that more specific paths are matched first.

    Paths with more segments come first; among paths of equal length, those
    whose first variable segment comes later come first.
    """
    routes.sort(key=_priority)


def raw_route_path(request: Request) -> str:
    """Return the template of the route that matched ``request``, e.g. ``/foo/{id}``."""
    try:
        return request.environ[_ROUTE_PATH_KEY]
    except KeyError:
        raise LookupError("request was not matched by a route") from None


def url_params(request: Request) -> Dict[str, str]:
    """Return the route variables of ``request``, if any."""
    return dict(request.environ.get(_URL_PARAMS_KEY) or {})


def _ensure_response(result: Optional[Response]) -> Response:
    return Response() if result is None else result


def _respond(handler: Optional[Handler]) -> Handler:
    def respond(request: Request) -> Response:
        return _ensure_response(handler(request))  # type: ignore[misc]

    return respond


def _route_path_middleware(path: str) -> Middleware:
    def middleware(next_handler: Handler) -> Handler:
        def handler(request: Request) -> Optional[Response]:
            request.environ[_ROUTE_PATH_KEY] = path
            return next_handler(request)

        return handler

    return handle_middleware(middleware)


def _panic_logger_middleware(logger: Logger) -> Middleware:
    def middleware(next_handler: Handler) -> Handler:
        def handler(request: Request) -> Optional[Response]:
            try:
                return next_handler(request)
            except Exception as exc:  # noqa: BLE001 - any failure becomes a 500
                logger.with_tags(
                    {"path": request.path, "stack": traceback.format_exc()}
                ).error("Recovered from a panic while handling HTTP request", exc)
                return Response(status=500)

        return handler

    return handle_middleware(middleware)


def _compile_template(template: str) -> Tuple[Pattern[str], Tuple[str, ...]]:
    parts: List[str] = []
    names: List[str] = []
    literals: List[str] = []
    position = 0

    for match in _VARIABLE_RE.finditer(template):
        literals.append(template[position:match.start()])
        parts.append(re.escape(template[position:match.start()]))
        pattern = match.group(2) or _DEFAULT_VARIABLE_PATTERN
        parts.append(f"(?P<v{len(names)}>{pattern})")
        names.append(match.group(1))
        position = match.end()

    literals.append(template[position:])
    parts.append(re.escape(template[position:]))

    if any("{" in literal or "}" in literal for literal in literals):
        raise ValueError(f"unbalanced braces in route path {template!r}")

    return re.compile("".join(parts)), tuple(names)


@dataclass(frozen=True)
class _CompiledRoute:
    pattern: Pattern[str]
    names: Tuple[str, ...]
    methods: Tuple[str, ...]
    handler: Handler


class _MuxHandler:
    """A WSGI application that dispatches requests to the first matching route."""

    def __init__(self, routes: Sequence[_CompiledRoute]) -> None:
        self._routes = tuple(routes)

    def dispatch(self, request: Request) -> Response:
        method_mismatch = False
        for route in self._routes:
            match = route.pattern.fullmatch(request.path)
            if match is None:
                continue
            if route.methods and request.method.upper() not in route.methods:
                method_mismatch = True
                continue
            request.environ[_URL_PARAMS_KEY] = {
                name: match.group(f"v{index}") for index, name in enumerate(route.names)
            }
            return _ensure_response(route.handler(request))

        if method_mismatch:
            return Response(status=405)
        return Response("404 page not found\n", status=404, mimetype="text/plain")

    def __call__(self, environ, start_response):
        response = self.dispatch(Request(environ))
        return response(environ, start_response)


def new_handler(
    routers: Iterable[Router],
    global_middlewares: Optional[Sequence[Middleware]] = (),
    logger: Optional[Logger] = None,
) -> _MuxHandler:
    """Build a WSGI application serving the routes of ``routers``.

    Route middlewares run inside global middlewares; in both lists the first
    middleware is the outermost one. Exceptions raised while handling a
    request are logged and answered with a 500 response.
    """
    logger = logger if logger is not None else new_noop()
    global_middlewares = list(global_middlewares or ())

    routes: List[Route] = [route for router in routers for route in router.routes()]
    sort_routes(routes)

    def wrap(handler: Handler, middlewares: Sequence[Middleware]) -> Handler:
        return reduce(lambda inner, mw: mw.handle(inner), reversed(middlewares), handler)

    compiled = []
    for route in routes:
        handler = wrap(_respond(route.handler), list(route.middlewares))
        handler = wrap(handler, global_middlewares)
        handler = _route_path_middleware(route.path).handle(handler)
        handler = _panic_logger_middleware(logger).handle(handler)

        pattern, names = _compile_template(route.path)
        methods = tuple(method.upper() for method in route.methods)
        compiled.append(_CompiledRoute(pattern, names, methods, handler))

    return _MuxHandler(compiled)