"""Key-based translations loaded from JSON files, with language negotiation."""

from __future__ import annotations

import contextvars
import json
import math
import os
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

ENVIRON_LANGUAGE_KEY = "utilkit.translator.language"

_LANGUAGE: contextvars.ContextVar[str] = contextvars.ContextVar(
    "utilkit.translator.language", default=""
)
_FLOAT_RE = re.compile(r"[+-]?(?:inf(?:inity)?|nan|(?:\d+\.?\d*|\.\d+)(?:e[+-]?\d+)?)", re.I)


class TranslatorError(Exception):
    """Loading translations failed."""


@dataclass
class TranslatorOptions:
    default_language: str = ""
    valid_languages: Iterable[str] = field(default_factory=list)


def _parse_q(value: str) -> float:
    if not _FLOAT_RE.fullmatch(value):
        return 1.0
    try:
        return float(value)
    except ValueError:
        return 1.0


class Translator:
    """Holds translations keyed by "<language>.<path>.<key>"."""

    def __init__(self, options: TranslatorOptions | None = None) -> None:
        o = options or TranslatorOptions()
        self._default_language = o.default_language
        self._lock = threading.Lock()
        self._p: dict[str, str] = {}
        self._valid_languages: set[str] = set(o.valid_languages)

    @property
    def translations(self) -> dict[str, str]:
        """A copy of every loaded translation by full key."""
        with self._lock:
            return dict(self._p)

    def parse_dir(self, dir_path: str = "") -> None:
        """Load every ".json" file below dir_path (the working dir if empty).

        Files in sub directories get their keys prefixed with their path.
        """
        if not dir_path:
            try:
                dir_path = os.getcwd()
            except OSError as err:
                raise TranslatorError(f"getwd failed: {err}") from err
        dir_path = os.path.normpath(dir_path)

        try:
            os.stat(dir_path)
        except OSError as err:
            raise TranslatorError(f"walking {dir_path} failed: {err}") from err

        if not os.path.isdir(dir_path):
            self._parse_walked(dir_path, dir_path)
            return

        def on_error(err: OSError) -> None:
            raise TranslatorError(
                f"walking {dir_path} failed: input error for path {err.filename}: {err}"
            ) from err

        for root, dirnames, filenames in os.walk(dir_path, onerror=on_error):
            dirnames.sort()
            for name in sorted(filenames):
                self._parse_walked(dir_path, os.path.join(root, name))

    def _parse_walked(self, dir_path: str, path: str) -> None:
        if os.path.splitext(path)[1] != ".json":
            return
        try:
            self.parse_file(dir_path, path)
        except TranslatorError as err:
            raise TranslatorError(f"walking {dir_path} failed: parsing {path} failed: {err}") from err

    def parse_file(self, dir_path: str, path: str) -> None:
        """Load the translations of one JSON file; its name is the language."""
        with self._lock:
            try:
                with open(path, encoding="utf-8") as f:
                    data = json.load(f)
            except OSError as err:
                raise TranslatorError(f"opening {path} failed: {err}") from err
            except ValueError as err:
                raise TranslatorError(f"unmarshaling {path} failed: {err}") from err
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise TranslatorError(f"unmarshaling {path} failed: not a JSON object")

            language = os.path.splitext(os.path.basename(path))[0]
            self._valid_languages.add(language)

            prefix = language
            parent = os.path.dirname(path)
            if parent != dir_path:
                rel = parent[len(dir_path):] if parent.startswith(dir_path) else parent
                parts = [p for p in rel.split(os.sep) if p]
                prefix += "." + ".".join(parts)

            self._parse(data, prefix)

    def _parse(self, data: dict[str, Any], prefix: str) -> None:
        for k, v in data.items():
            key = f"{prefix}.{k}"
            if isinstance(v, str):
                self._p[key] = v
            elif isinstance(v, dict):
                self._parse(v, key)

    def parse_accept_language(self, header: str) -> str:
        """Pick the best valid language of an Accept-Language header, or ""."""
        order: list[float] = []
        by_q: dict[float, list[str]] = {}
        for chunk in header.strip().split(","):
            chunk = chunk.strip()
            if not chunk:
                continue
            parts = chunk.split(";")
            q = 1.0
            if len(parts) > 1:
                s = parts[1].strip()
                if s.startswith("q="):
                    q = _parse_q(s[2:])
            if q not in by_q:
                order.append(q)
            by_q.setdefault(q, []).append(parts[0].strip())

        order.sort(key=lambda v: (not math.isnan(v), v))
        with self._lock:
            for q in reversed(order):
                for language in by_q.get(q, []):
                    if language in self._valid_languages:
                        return language
        return ""

    def wsgi_middleware(self, app: Callable[..., Any]) -> Callable[..., Any]:
        """Wrap a WSGI app so its requests carry the negotiated language."""

        def middleware(environ: dict[str, Any], start_response: Callable[..., Any]) -> Any:
            header = environ.get("HTTP_ACCEPT_LANGUAGE", "")
            if not header:
                return app(environ, start_response)
            language = self.parse_accept_language(header)
            environ[ENVIRON_LANGUAGE_KEY] = language
            token = _LANGUAGE.set(language)
            try:
                return app(environ, start_response)
            finally:
                _LANGUAGE.reset(token)

        return middleware

    def _language(self, language: str) -> str:
        return language or self._default_language

    def language_ctx(self) -> str:
        """The language of the current request, or the default language."""
        return self._language(_LANGUAGE.get())

    def translate(self, language: str, key: str) -> str:
        """Translate key, falling back on the default language, then the key."""
        with self._lock:
            k1 = f"{self._language(language)}.{key}"
            if k1 in self._p:
                return self._p[k1]
            k2 = f"{self._default_language}.{key}"
            if k2 in self._p:
                return self._p[k2]
            return k1

    def translatef(self, language: str, key: str, *args: Any) -> str:
        """Translate key and fill its printf-style placeholders with args."""
        template = self.translate(language, key)
        return template % args if args else template

    def translate_c(self, key: str) -> str:
        """Translate key into the language of the current request."""
        return self.translate(_LANGUAGE.get(), key)

    def translate_cf(self, key: str, *args: Any) -> str:
        """Translate and format key in the language of the current request."""
        return self.translatef(_LANGUAGE.get(), key, *args)