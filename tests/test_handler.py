import json

import pytest
from werkzeug.test import Client, EnvironBuilder
from werkzeug.wrappers import Response

from copper.chttp.handler import (
    Middleware,
    Route,
    StaticRouter,
    handle_middleware,
    new_handler,
    raw_route_path,
    reverse_routes,
    sort_routes,
    url_params,
)
from copper.clogger import Level, new_noop, new_recorder


def _client(routes, global_middlewares=(), logger=None):
    app = new_handler([StaticRouter(routes)], global_middlewares, logger or new_noop())
    return Client(app)


def _ping_routes(routes):
    for route in routes:
        route.handler = lambda request, body=route.path: Response(body)

    client = _client(routes)
    for route in routes:
        resp = client.get(route.path)
        assert resp.get_data(as_text=True) == route.path


def _recording(calls, name):
    def middleware(next_handler):
        def handler(request):
            calls.append(name)
            return next_handler(request)

        return handler

    return handle_middleware(middleware)


def test_new_handler():
    client = _client([Route("/", lambda request: Response("success"), methods=["GET"])])

    resp = client.get("/")

    assert resp.get_data(as_text=True) == "success"


def test_new_handler_global_middleware():
    calls = []

    def middleware(next_handler):
        def handler(request):
            calls.append("global")
            return next_handler(request)

        return handler

    client = _client([Route("/", lambda request: None)], [handle_middleware(middleware)])
    resp = client.get("/")

    assert resp.status_code == 200
    assert calls == ["global"]


def test_new_handler_route_middleware_order():
    calls = []

    client = _client(
        [
            Route(
                "/",
                lambda request: Response(",".join(calls)),
                middlewares=[_recording(calls, "1"), _recording(calls, "2")],
            )
        ]
    )
    resp = client.get("/")

    assert resp.get_data(as_text=True) == "1,2"


def test_global_middlewares_wrap_route_middlewares():
    calls = []

    client = _client(
        [
            Route(
                "/",
                lambda request: Response(",".join(calls)),
                middlewares=[_recording(calls, "route")],
            )
        ],
        [_recording(calls, "global")],
    )
    resp = client.get("/")

    assert resp.get_data(as_text=True) == "global,route"


def test_route_priority_with_placeholder():
    routes = [Route("/foo"), Route("/{id}")]

    _ping_routes(routes)
    _ping_routes(reverse_routes(routes))


def test_route_priority_with_index():
    routes = [Route("/foo"), Route("/")]

    _ping_routes(routes)
    _ping_routes(reverse_routes(routes))


def test_route_priority_equal():
    routes = [Route("/foo"), Route("/bar")]

    _ping_routes(routes)
    _ping_routes(reverse_routes(routes))


def test_sort_routes_places_matchers_last():
    routes = [Route("/{id}"), Route("/foo")]
    sort_routes(routes)

    assert [route.path for route in routes] == ["/foo", "/{id}"]


def test_sort_routes_longer_paths_first():
    routes = [Route("/"), Route("/a"), Route("/a/b/c"), Route("/a/b")]
    sort_routes(routes)

    assert [route.path for route in routes] == ["/a/b/c", "/a/b", "/a", "/"]


def test_sort_routes_later_matcher_first():
    routes = [Route("/{a}/x"), Route("/x/{a}"), Route("/x/y")]
    sort_routes(routes)

    assert [route.path for route in routes] == ["/x/y", "/x/{a}", "/{a}/x"]


def test_reverse_routes_in_place():
    routes = [Route("/a"), Route("/b"), Route("/c")]
    result = reverse_routes(routes)

    assert result is routes
    assert [route.path for route in routes] == ["/c", "/b", "/a"]


def test_unknown_path_is_not_found():
    client = _client([Route("/foo", lambda request: Response("foo"))])

    resp = client.get("/bar")

    assert resp.status_code == 404
    assert resp.get_data(as_text=True) == "404 page not found\n"


def test_method_mismatch():
    client = _client([Route("/foo", lambda request: Response("foo"), methods=["GET"])])

    assert client.post("/foo").status_code == 405
    assert client.get("/foo").get_data(as_text=True) == "foo"


def _params_handler(request):
    return Response(json.dumps(url_params(request)))


def test_url_params():
    client = _client([Route("/foo/{id}", _params_handler)])

    resp = client.get("/foo/bar")

    assert json.loads(resp.get_data(as_text=True)) == {"id": "bar"}


def test_url_params_with_pattern():
    client = _client([Route("/static/{path:.*}", _params_handler)])

    resp = client.get("/static/css/app.css")

    assert json.loads(resp.get_data(as_text=True)) == {"path": "css/app.css"}


def test_url_params_pattern_rejects_non_matching():
    client = _client([Route("/items/{id:[0-9]+}", lambda request: Response("item"))])

    assert client.get("/items/42").get_data(as_text=True) == "item"
    assert client.get("/items/abc").status_code == 404


def test_unbalanced_template_is_rejected():
    with pytest.raises(ValueError):
        new_handler([StaticRouter([Route("/foo/{id", lambda request: None)])], (), new_noop())


def test_panic_logger_error():
    logs = []
    boom = ValueError("test-error")

    def handler(request):
        raise boom

    client = _client([Route("/", handler, methods=["GET"])], logger=new_recorder(logs))
    resp = client.get("/")

    assert resp.status_code == 500
    assert len(logs) == 1
    assert logs[0].msg == "Recovered from a panic while handling HTTP request"
    assert logs[0].level == Level.ERROR
    assert logs[0].error is boom
    assert str(logs[0].error) == "test-error"
    assert logs[0].tags["path"] == "/"
    assert "handler.py" in logs[0].tags["stack"]


def test_panic_logger_no_panic():
    logs = []
    client = _client(
        [Route("/", lambda request: Response(status=200), methods=["GET"])],
        logger=new_recorder(logs),
    )

    resp = client.get("/")

    assert resp.status_code == 200
    assert logs == []


def test_route_path_in_ctx():
    def middleware(next_handler):
        def handler(request):
            global_path = raw_route_path(request)
            response = next_handler(request)
            response.headers["X-Global-Route"] = global_path
            return response

        return handler

    def route_handler(request):
        return Response(raw_route_path(request))

    client = _client(
        [Route("/foo/{id}", route_handler, methods=["GET"])],
        [handle_middleware(middleware)],
    )
    resp = client.get("/foo/bar")

    assert resp.headers["X-Global-Route"] == "/foo/{id}"
    assert resp.get_data(as_text=True) == "/foo/{id}"


def test_raw_route_path_unrouted_request():
    request = EnvironBuilder(path="/").get_request()

    with pytest.raises(LookupError):
        raw_route_path(request)


def test_url_params_unrouted_request():
    request = EnvironBuilder(path="/").get_request()

    assert url_params(request) == {}


def test_handle_middleware_calls_fn():
    wrapped = []

    def fn(next_handler):
        wrapped.append(next_handler)
        return next_handler

    def inner(request):
        return Response("x")

    middleware = handle_middleware(fn)

    assert isinstance(middleware, Middleware)
    assert middleware.handle(inner) is inner
    assert wrapped == [inner]


def test_static_router_routes():
    routes = [Route("/a"), Route("/b")]

    assert StaticRouter(routes).routes() == routes


def test_multiple_routers_are_combined():
    app = new_handler(
        [
            StaticRouter([Route("/a", lambda request: Response("a"))]),
            StaticRouter([Route("/b", lambda request: Response("b"))]),
        ],
        (),
        new_noop(),
    )
    client = Client(app)

    assert client.get("/a").get_data(as_text=True) == "a"
    assert client.get("/b").get_data(as_text=True) == "b"