"""An HTTP server that serves a WSGI application and stops with the app lifecycle."""

from __future__ import annotations

import socket
import socketserver
import threading
from socketserver import ThreadingMixIn
from typing import Any, Optional
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from copper.chttp.http_config import Config
from copper.clifecycle import Lifecycle
from copper.clogger import Logger


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True

    def server_bind(self) -> None:
        socketserver.TCPServer.server_bind(self)
        self.server_name = socket.gethostname()
        self.server_port = self.server_address[1]
        self.setup_environ()


class _QuietRequestHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        pass


class Server:
    """Serves ``handler`` on the configured port until the lifecycle stops."""

    def __init__(self, handler: Any, config: Config, logger: Logger, lifecycle: Lifecycle) -> None:
        self.handler = handler
        self.config = config
        self.logger = logger
        self.lifecycle = lifecycle
        self._server: Optional[_ThreadingWSGIServer] = None
        self._thread: Optional[threading.Thread] = None

    def run(self) -> None:
        """Start serving in the background and register shutdown on stop.

        Failures to listen are logged rather than raised.
        """
        self.lifecycle.on_stop(self._shutdown)

        try:
            self._server = make_server(
                "",
                self.config.port,
                self.handler,
                server_class=_ThreadingWSGIServer,
                handler_class=_QuietRequestHandler,
            )
        except OSError as exc:
            self.logger.error("Server did not close cleanly", exc)
            return

        self._thread = threading.Thread(target=self._serve, name="copper-http", daemon=True)
        self._thread.start()

    def _serve(self) -> None:
        server = self._server
        if server is None:
            return
        self.logger.with_tags({"port": self.config.port}).info("Starting http server..")
        try:
            server.serve_forever()
        except Exception as exc:  # noqa: BLE001 - reported, not raised, from the thread
            self.logger.error("Server did not close cleanly", exc)

    def _shutdown(self, timeout: float) -> None:
        self.logger.info("Shutting down http server..")

        server, thread = self._server, self._thread
        self._server = None
        if server is None:
            return

        stopper = threading.Thread(target=server.shutdown, daemon=True)
        stopper.start()
        stopper.join(timeout)
        if stopper.is_alive():
            raise TimeoutError("http server did not shut down in time")

        server.server_close()
        if thread is not None:
            thread.join(timeout)