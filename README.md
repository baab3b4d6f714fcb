# copper

copper is a small toolkit for building services. It bundles the pieces most
applications need before they do anything useful:

- **Config** (`copper.cconfig`): TOML files that can extend other files, with
  overrides given as TOML snippets.
- **Errors** (`copper.cerrors`): an `Error` exception that carries a message,
  structured tags and an optional cause, and renders the whole chain.
- **Logging** (`copper.clogger`): a `Logger` interface with plain-text and JSON
  stream writers, a logger backed by the standard `logging` package, a no-op
  logger and a recorder for tests.
- **Lifecycle** (`copper.clifecycle`): cleanup callbacks that run, in order,
  when the application stops.
- **HTTP** (`copper.chttp`): routes, middlewares, route ordering, exception and
  request logging, HTML template rendering, and a WSGI server that shuts down
  with the lifecycle.
- **SQL** (`copper.csql`): SQLite connections, per-request transactions, a
  querier with `IN (...)` expansion, and up/down migrations.
- **App** (`copper.app`): a container holding the lifecycle, config and
  logger, built from command-line options.

It is a library; it installs no commands.

## Installation

Install the `copper` distribution with your usual package installer. The
test suite needs the `test` extra (pytest).

## Configuration

Configuration lives in TOML files. A file may extend one or more others with
the top-level `extends` key, a path or a list of paths relative to the
extending file, loaded in order.

```toml
# config/base.toml
[chttp]
port = 7501

[clogger]
format = "plain"

[csql]
dialect = "sqlite3"
dsn = "app.db"

[csql.migrations]
direction = "up"
source = "embed"
```

```toml
# config/dev.toml
extends = "base.toml"

[chttp]
port = 5902
```

`new_loader(path, overrides)` raises an `Error` when a file sets a plain key
that a file it extends already sets; `new_loader_with_key_overrides` lets the
extending file win. Tables are merged key by key in both cases.

Overrides are a `;`-separated list of TOML snippets such as
`chttp.port=5902;clogger.format="json"`, merged on top of the loaded tree.
They are applied only when the loaded file has an `extends` key.

```python
from copper.cconfig import new_loader_with_key_overrides
from copper.clogger import load_config

loader = new_loader_with_key_overrides("config/dev.toml", 'clogger.format="json"')
log_config = load_config(loader)
```

`Loader.load(key, cls)` reads the table at `key` into `dict`, a dataclass type
or a dataclass instance (whose fields not in the table keep their values). A
dataclass field is read from the TOML key named by its `toml` metadata, or by
its own name. A missing table gives the empty or default target; a key that
is not a table, or a value of the wrong type, raises `Error`.

## Errors

```python
from copper.cerrors import Error

try:
    open("missing.toml")
except OSError as exc:
    err = Error("failed to load config file", {"path": "missing.toml"}, exc)
    print(err)
# failed to load config file where path=missing.toml because
# > [Errno 2] No such file or directory: 'missing.toml'
```

Tags are printed sorted and comma separated, and causes are chained one per
line. `with_tags(err, tags)` returns a copy of any exception as an `Error`
carrying new tags.

## Logging

```python
import sys
from copper.clogger import Format, new_with_writers

logger = new_with_writers(sys.stdout, sys.stderr, Format.PLAIN)
logger.with_tags({"request": "abc"}).info("handled request")
logger.error("could not save", ValueError("disk full"))
```

Debug and info go to the first stream, warn and error to the second. Plain
lines look like `2024/01/02 15:04:05 [INFO] handled request where request=abc`;
`Format.JSON` writes one JSON object per line with `ts`, `level`, `msg`, the
tags and, when given, `error`.

- `new_logger()` writes plain logs to stdout and stderr.
- `new_with_config(Config(out=..., err=..., format=...))` appends to the given
  files, falling back to stdout and stderr.
- `new_std_logger(config, lifecycle)` builds a `StdLogger` on the standard
  `logging` package, writing to `config.out` (stderr when empty) and flushing
  when the lifecycle stops.
- `new_recorder(logs)` appends a `RecordedLog(level, tags, msg, error)` to
  `logs` for every call; `new_noop()` discards everything.
- `load_config(loader)` reads the `clogger` table (`out`, `err`, `format`);
  an unknown format falls back to plain.

## Lifecycle and the application container

```python
from copper.app import new_app

app = new_app(["--config", "config/dev.toml", "--set", "chttp.port=8080"])
app.lifecycle.on_stop(lambda timeout: print("bye"))
app.run()
```

`Lifecycle.on_stop(fn)` registers a function (usable as a decorator) that is
called with the stop timeout in seconds (10 by default). `Lifecycle.stop(logger)`
runs them in order and logs any that raise.

`new_app(argv)` reads the `--config` (default `./config/dev.toml`) and `--set`
options, loads the config with key overrides, and builds the lifecycle and a
`StdLogger`; on failure it prints the error and exits with status 1.
`init_app(argv)` does the same but raises instead. `App.run(*runners)` calls
each runner's `run()` and then stops the lifecycle; `App.start(*runners)` runs
them and waits for SIGINT or SIGTERM before stopping. If a runner raises, the
failure is logged and the process exits with status 1.

## HTTP

A handler takes a `werkzeug.wrappers.Request` and returns a `Response`, or
`None` for an empty 200 response.

```python
from werkzeug.wrappers import Response

from copper.chttp.handler import Route, StaticRouter, new_handler
from copper.chttp.http_config import load_config
from copper.chttp.request_logger import RequestLoggerMiddleware
from copper.chttp.server import Server


def hello(request):
    return Response("hello")


router = StaticRouter([Route(path="/", methods=["GET"], handler=hello)])
handler = new_handler([router], [RequestLoggerMiddleware(app.logger)], app.logger)

server = Server(handler, load_config(app.config), app.logger, app.lifecycle)
app.start(server)
```

`new_handler` returns a WSGI application. Route paths are templates such as
`/foo/{id}` or `/static/{path:.*}`. Routes are ordered so that paths with more
segments, and literal segments before placeholders, are tried first.
Route middlewares wrap the handler in list order (the first is outermost),
global middlewares wrap those, and an exception raised while handling a
request is logged and answered with a 500. Unmatched paths get a 404; a path
matched only under other methods gets a 405.

`handle_middleware(fn)` turns a function from handler to handler into a
`Middleware`. `raw_route_path(request)` returns the matched template and
`url_params(request)` its variables. `RequestLoggerMiddleware` logs
`METHOD path status`, with the basic-auth user when there is one.

`http_config.load_config` reads the `chttp` table into `Config` (`port`,
default 7501, `use_local_html`, `render_html_error`,
`enable_single_page_routing`). `Server.run()` serves in a background thread
and registers its shutdown with the lifecycle.

### HTML templates

`HTMLRenderer(html_dir, ...)` renders Jinja templates from `src/layouts`,
`src/pages` and `src/partials` under `html_dir` (with `use_local_html`, from
`./web`). A page extends the layout given to `render`:

```html
{% extends layout %}
{% block content %}Hello {{ user }} {{ partial("footer", data) }}{% endblock %}
```

`render(request, layout, page, data)` makes the data available as `data` and,
for a mapping, its keys as variables. `partial(name, data)` renders
`src/partials/<name>.html`. `HTMLRenderFunc(name, func)` adds a template
function built per request. `EmptyFS` stands for an empty template directory.

## SQL

```python
from copper.csql.db import new_db_connection
from copper.csql.migrator import Migrator
from copper.csql.querier import Querier
from copper.csql.sql_config import load_config
from copper.csql.sql_tx import TxMiddleware, ctx_with_tx

sql_config = load_config(app.config)
db = new_db_connection(app.lifecycle, sql_config, app.logger)

Migrator(db, "migrations", sql_config, app.logger).run()

querier = Querier(db, sql_config)
with ctx_with_tx(db, sql_config.dialect) as tx:
    querier.exec("insert into people (name) values (?)", "test")
    rows = querier.with_in().select("select * from people where name in (?)", ["test"])
    tx.commit()

tx_middleware = TxMiddleware(db, sql_config, app.logger)
```

- `new_db_connection` opens a SQLite connection (dialect `sqlite3` or
  `sqlite`) in autocommit mode, checks it, and closes it when the lifecycle
  stops.
- `ctx_with_tx` begins a transaction and makes it current for the block;
  `tx_from_ctx()` returns it. The querier's `get`, `select` and `exec` run in
  it; rows come back as dicts keyed by column name. `rebind` rewrites `?`
  placeholders for dialects such as `postgres` and `sqlserver`.
- `TxMiddleware` runs each request in a transaction, committing it for
  responses below 400 and rolling it back otherwise or when the handler raises.
- `Migrator.run()` applies or rolls back the `.sql` files in the migrations
  directory (or `./migrations` when `csql.migrations.source` is `dir`) in the
  direction set by `csql.migrations.direction`, recording them in a
  `gorp_migrations` table. Files hold `-- +migrate Up` and `-- +migrate Down`
  sections; `parse_migration` reads them.

## What the package does not do

- There are no helpers for reading JSON request bodies or writing JSON
  responses, and no ready-made HTML response writer with default "not found"
  and error pages; handlers build their own `Response` objects, using
  `HTMLRenderer.render` for HTML.
- There is no router for static files or single-page apps. The
  `render_html_error` and `enable_single_page_routing` config fields are read
  but nothing in the package acts on them.
- Database connections are SQLite only.