"""Rendering of HTML templates with layouts, pages and partials.

Templates live in an HTML directory under ``src/layouts``, ``src/pages`` and
``src/partials``. A page extends the layout chosen by the caller through the
``layout`` variable::

    {% extends layout %}
    {% block content %}Hello {{ user }}{% endblock %}

Templates receive the render data as ``data`` and, when it is a mapping, its
keys as variables. ``partial(name, data)`` renders ``src/partials/<name>.html``.
"""

from __future__ import annotations

import os
import posixpath
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

import jinja2
from werkzeug.wrappers import Request

from copper.cerrors import Error
from copper.chttp.http_config import Config, EmptyFS
from copper.clogger import Logger, new_noop


class HTML(str):
    """Rendered HTML that templates insert without escaping it again."""

    __slots__ = ()

    def __html__(self) -> str:
        return str(self)


@dataclass
class HTMLRenderFunc:
    """A template function named ``name``.

    ``func`` is called with the current request and returns the callable that
    templates invoke.
    """

    name: str
    func: Callable[[Request], Any]


def _make_loader(html_dir: Any) -> jinja2.BaseLoader:
    if html_dir is None or isinstance(html_dir, EmptyFS):
        return jinja2.DictLoader({})
    if isinstance(html_dir, jinja2.BaseLoader):
        return html_dir
    return jinja2.FileSystemLoader(os.fspath(html_dir))


def _data_context(data: Any) -> Dict[str, Any]:
    context: Dict[str, Any] = {}
    if isinstance(data, Mapping):
        context.update((key, value) for key, value in data.items() if isinstance(key, str))
    context["data"] = data
    return context


class HTMLRenderer:
    """Renders layouts, pages and partials from an HTML directory."""

    def __init__(
        self,
        html_dir: Any = None,
        static_dir: Any = None,
        render_funcs: Iterable[HTMLRenderFunc] = (),
        config: Optional[Config] = None,
        logger: Optional[Logger] = None,
    ) -> None:
        config = config if config is not None else Config()

        if config.use_local_html:
            try:
                cwd = os.getcwd()
            except OSError as exc:
                raise Error("failed to get current working directory", None, exc) from exc
            html_dir = os.path.join(cwd, "web")

        self.html_dir = html_dir
        self.static_dir = static_dir
        self.render_funcs = list(render_funcs)
        self.config = config
        self.logger = logger if logger is not None else new_noop()
        self._env = jinja2.Environment(loader=_make_loader(html_dir), autoescape=True)

    def _funcs(self, request: Request) -> Dict[str, Any]:
        funcs: Dict[str, Any] = {"partial": self._partial(request)}
        funcs.update((fn.name, fn.func(request)) for fn in self.render_funcs)
        return funcs

    def render(self, request: Request, layout: str, page: str, data: Any = None) -> HTML:
        """Render ``page`` inside ``layout`` with ``data``."""
        layout_name = posixpath.join("src", "layouts", layout)
        page_name = posixpath.join("src", "pages", page)

        try:
            self._env.get_template(layout_name)
            template = self._env.get_template(page_name)
        except jinja2.TemplateError as exc:
            raise Error(
                "failed to parse templates in html dir",
                {"layout": layout, "page": page},
                exc,
            ) from exc

        context = _data_context(data)
        context.update(self._funcs(request))
        context["layout"] = layout_name

        try:
            return HTML(template.render(context))
        except Exception as exc:  # noqa: BLE001 - any template failure is reported
            raise Error("failed to execute template", None, exc) from exc

    def _partial(self, request: Request) -> Callable[..., HTML]:
        def partial(name: str, data: Any = None) -> HTML:
            try:
                template = self._env.get_template(posixpath.join("src", "partials", f"{name}.html"))
            except jinja2.TemplateError as exc:
                raise Error("failed to parse partial template", {"name": name}, exc) from exc

            context = _data_context(data)
            context.update(self._funcs(request))

            try:
                return HTML(template.render(context))
            except Exception as exc:  # noqa: BLE001 - any template failure is reported
                raise Error("failed to execute partial template", {"name": name}, exc) from exc

        return partial