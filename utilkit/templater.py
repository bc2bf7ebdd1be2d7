"""A store of Jinja templates sharing a set of layouts.

Every template is compiled together with all registered layouts, which come
first in the compiled source. A layout is expected to hold definitions only
(macros, for instance); the templates can then use them.
"""

from __future__ import annotations

import os
import threading
from typing import Iterator, Optional

import jinja2


class TemplaterError(Exception):
    """Loading or parsing a template failed."""


def _ext(path: str) -> str:
    """Extension of the last path element, dot included, or ""."""
    name = os.path.basename(path)
    idx = name.rfind(".")
    return name[idx:] if idx >= 0 else ""


def _walk_files(root: str) -> Iterator[str]:
    """Yield the files below root in lexical order, descending into dirs in place."""
    for name in sorted(os.listdir(root)):
        path = os.path.join(root, name)
        if os.path.isdir(path):
            yield from _walk_files(path)
        else:
            yield path


def _files(dir_path: str, ext: str, what: str) -> Iterator[str]:
    try:
        os.stat(dir_path)
    except OSError as err:
        raise TemplaterError(
            f"walking {what} in {dir_path} failed: input error for path {dir_path}: {err}"
        ) from err
    if not os.path.isdir(dir_path):
        paths: Iterator[str] = iter([dir_path])
    else:
        paths = _walk_files(dir_path)
    try:
        for path in paths:
            if ext and _ext(path) != ext:
                continue
            yield path
    except OSError as err:
        raise TemplaterError(f"walking {what} in {dir_path} failed: {err}") from err


def _read(path: str, message: str) -> str:
    try:
        with open(path, encoding="utf-8") as f:
            return f.read()
    except OSError as err:
        raise TemplaterError(f"{message}: {err}") from err


class Templater:
    """Stores templates by path, each compiled with the shared layouts."""

    def __init__(self) -> None:
        self._env = jinja2.Environment(
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._layouts: list[str] = []
        self._templates: dict[str, jinja2.Template] = {}
        self._lock = threading.Lock()

    @property
    def layouts(self) -> list[str]:
        """A copy of the registered layouts, in order."""
        with self._lock:
            return list(self._layouts)

    @property
    def templates(self) -> dict[str, jinja2.Template]:
        """A copy of the stored templates by path."""
        with self._lock:
            return dict(self._templates)

    def add_layouts_from_dir(self, dir_path: str, ext: str = "") -> None:
        """Add every file below dir_path with extension ext (any if empty) as a layout."""
        dir_path = os.path.normpath(dir_path)
        for path in _files(dir_path, ext, "layouts"):
            self.add_layout(_read(path, f"reading {path} failed"))

    def add_templates_from_dir(self, dir_path: str, ext: str = "") -> None:
        """Add every file below dir_path with extension ext (any if empty) as a template.

        Templates are stored under their path relative to dir_path, with forward
        slashes and a leading slash, such as "/dir/page.html".
        """
        dir_path = os.path.normpath(dir_path)
        for path in _files(dir_path, ext, "templates"):
            content = _read(path, f"reading template content of {path} failed")
            rel = path[len(dir_path):] if path.startswith(dir_path) else path
            key = rel.replace(os.sep, "/")
            try:
                self.add_template(key, content)
            except TemplaterError as err:
                raise TemplaterError(
                    f"walking templates in {dir_path} failed: adding template failed: {err}"
                ) from err

    def add_layout(self, content: str) -> None:
        with self._lock:
            self._layouts.append(content)

    def add_template(self, path: str, content: str) -> None:
        """Compile content with the layouts and store it under path."""
        try:
            tpl = self.parse(content)
        except TemplaterError as err:
            raise TemplaterError(f"parsing template for path {path} failed: {err}") from err
        with self._lock:
            self._templates[path] = tpl

    def del_template(self, path: str) -> None:
        with self._lock:
            self._templates.pop(path, None)

    def template(self, path: str) -> Optional[jinja2.Template]:
        """Return the template stored under path, or None."""
        with self._lock:
            return self._templates.get(path)

    def parse(self, content: str) -> jinja2.Template:
        """Compile content together with the current layouts."""
        try:
            self._env.parse(content)
        except jinja2.TemplateSyntaxError as err:
            raise TemplaterError(f"parsing template content failed: {err}") from err

        with self._lock:
            layouts = list(self._layouts)
        for idx, layout in enumerate(layouts, start=1):
            try:
                self._env.parse(layout)
            except jinja2.TemplateSyntaxError as err:
                raise TemplaterError(f"parsing layout #{idx} failed: {err}") from err

        try:
            return self._env.from_string("".join(layouts) + content)
        except jinja2.TemplateSyntaxError as err:
            raise TemplaterError(f"parsing template content failed: {err}") from err