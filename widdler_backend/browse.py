from __future__ import annotations

import mimetypes
from pathlib import Path
from urllib.parse import quote

from jinja2 import Environment
from starlette.responses import HTMLResponse, RedirectResponse, Response

from .config import DEFAULT_DOCUMENT
from .security import safe_join


_env = Environment(autoescape=True)

LISTING_TEMPLATE = _env.from_string(
    """<!doctype html>
<meta name="viewport" content="width=device-width">
<pre>
{% for entry in entries -%}
<a href="{{ entry.href }}">{{ entry.name }}</a>
{% endfor -%}
</pre>
"""
)


class Browser:
    """Plain file and directory browsing for one tenant directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def serve(self, request_path: str) -> Response:
        target = safe_join(self.root, request_path)
        if not target.exists():
            return Response("404 page not found", status_code=404, media_type="text/plain")

        if target.is_dir():
            if not request_path.endswith("/"):
                return RedirectResponse(url=f"{quote(request_path)}/", status_code=301)
            index = target / DEFAULT_DOCUMENT
            if index.is_file():
                return self._file(index)
            return HTMLResponse(self.render_listing(target))

        return self._file(target)

    def _file(self, path: Path) -> Response:
        media_type, _ = mimetypes.guess_type(path.name)
        return Response(content=path.read_bytes(), media_type=media_type or "application/octet-stream")

    def render_listing(self, directory: Path) -> str:
        entries = []
        for child in sorted(directory.iterdir(), key=lambda p: p.name):
            name = child.name + ("/" if child.is_dir() else "")
            entries.append({"name": name, "href": quote(name)})
        return LISTING_TEMPLATE.render(entries=entries)
