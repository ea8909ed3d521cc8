"""A small WebDAV handler bound to one tenant directory.

It covers what browser document savers use: OPTIONS discovery, GET/HEAD,
conditional PUT, DELETE and PROPFIND. Callers are expected to have validated
the request path against the root already.
"""

from __future__ import annotations

import logging
import mimetypes
import os
import tempfile
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from email.utils import formatdate
from pathlib import Path
from urllib.parse import quote

from starlette.responses import Response

from .security import safe_join


logger = logging.getLogger(__name__)

ALLOWED_METHODS = ("OPTIONS", "GET", "HEAD", "PUT", "DELETE", "PROPFIND")
DAV_NS = "DAV:"


@dataclass(frozen=True)
class DavRequest:
    method: str
    path: str
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)


def etag_for(path: Path) -> str:
    st = path.stat()
    return f'"{st.st_mtime_ns:x}{st.st_size:x}"'


def _content_type(path: Path) -> str:
    guessed, _ = mimetypes.guess_type(path.name)
    if guessed is None:
        return "application/octet-stream"
    if guessed.startswith("text/"):
        return f"{guessed}; charset=utf-8"
    return guessed


def _matches(condition: str, etag: str | None) -> bool:
    condition = condition.strip()
    if condition == "*":
        return etag is not None
    if etag is None:
        return False
    return any(tag.strip() == etag for tag in condition.split(","))


class DavHandler:
    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def serve(self, request: DavRequest) -> Response:
        method = request.method.upper()
        handler = getattr(self, f"_do_{method.lower()}", None)
        if method not in ALLOWED_METHODS or handler is None:
            return Response(status_code=405, headers={"Allow": ", ".join(ALLOWED_METHODS)})
        target = safe_join(self.root, request.path)
        return handler(request, target)

    def _do_options(self, request: DavRequest, target: Path) -> Response:
        return Response(
            status_code=200,
            headers={
                "Allow": ", ".join(ALLOWED_METHODS),
                "DAV": "1, 2",
                "MS-Author-Via": "DAV",
            },
        )

    def _file_headers(self, target: Path) -> dict[str, str]:
        st = target.stat()
        return {
            "ETag": etag_for(target),
            "Last-Modified": formatdate(st.st_mtime, usegmt=True),
            "Content-Type": _content_type(target),
        }

    def _do_get(self, request: DavRequest, target: Path) -> Response:
        if not target.is_file():
            return Response("Not Found", status_code=404, media_type="text/plain")
        headers = self._file_headers(target)
        if _matches(request.header("if-none-match"), headers["ETag"]):
            return Response(status_code=304, headers={"ETag": headers["ETag"]})
        # Read fully while the caller still holds the tenant session.
        return Response(content=target.read_bytes(), headers=headers)

    def _do_head(self, request: DavRequest, target: Path) -> Response:
        if not target.is_file():
            return Response(status_code=404)
        headers = self._file_headers(target)
        headers["Content-Length"] = str(target.stat().st_size)
        return Response(status_code=200, headers=headers)

    def _do_put(self, request: DavRequest, target: Path) -> Response:
        if target.is_dir():
            return Response("Method Not Allowed", status_code=405, media_type="text/plain")
        current = etag_for(target) if target.is_file() else None
        if_match = request.header("if-match")
        if if_match and not _matches(if_match, current):
            return Response("Precondition Failed", status_code=412, media_type="text/plain")
        if request.header("if-none-match").strip() == "*" and current is not None:
            return Response("Precondition Failed", status_code=412, media_type="text/plain")
        if not target.parent.is_dir():
            return Response("Conflict", status_code=409, media_type="text/plain")

        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(request.body)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, target)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise
        logger.debug("wrote %d bytes to %s", len(request.body), target)
        return Response(status_code=201, headers={"ETag": etag_for(target)})

    def _do_delete(self, request: DavRequest, target: Path) -> Response:
        if target == self.root.resolve():
            return Response("Forbidden", status_code=403, media_type="text/plain")
        if not target.exists():
            return Response("Not Found", status_code=404, media_type="text/plain")
        if target.is_dir():
            return Response("Method Not Allowed", status_code=405, media_type="text/plain")
        target.unlink()
        return Response(status_code=204)

    def _do_propfind(self, request: DavRequest, target: Path) -> Response:
        if not target.exists():
            return Response("Not Found", status_code=404, media_type="text/plain")
        depth = request.header("depth", "1").strip()
        resources = [target]
        if target.is_dir() and depth != "0":
            resources.extend(sorted(target.iterdir(), key=lambda p: p.name))

        ET.register_namespace("D", DAV_NS)
        multistatus = ET.Element(f"{{{DAV_NS}}}multistatus")
        for resource in resources:
            multistatus.append(self._propstat(resource))
        body = ET.tostring(multistatus, encoding="utf-8", xml_declaration=True)
        return Response(content=body, status_code=207, media_type='application/xml; charset="utf-8"')

    def _propstat(self, resource: Path) -> ET.Element:
        root = self.root.resolve()
        relative = resource.relative_to(root).as_posix()
        href = "/" if relative == "." else "/" + quote(relative)
        if resource.is_dir() and not href.endswith("/"):
            href += "/"

        st = resource.stat()
        response = ET.Element(f"{{{DAV_NS}}}response")
        ET.SubElement(response, f"{{{DAV_NS}}}href").text = href
        propstat = ET.SubElement(response, f"{{{DAV_NS}}}propstat")
        prop = ET.SubElement(propstat, f"{{{DAV_NS}}}prop")
        ET.SubElement(prop, f"{{{DAV_NS}}}displayname").text = resource.name
        ET.SubElement(prop, f"{{{DAV_NS}}}getlastmodified").text = formatdate(st.st_mtime, usegmt=True)
        resourcetype = ET.SubElement(prop, f"{{{DAV_NS}}}resourcetype")
        if resource.is_dir():
            ET.SubElement(resourcetype, f"{{{DAV_NS}}}collection")
        else:
            ET.SubElement(prop, f"{{{DAV_NS}}}getcontentlength").text = str(st.st_size)
            ET.SubElement(prop, f"{{{DAV_NS}}}getcontenttype").text = _content_type(resource)
            ET.SubElement(prop, f"{{{DAV_NS}}}getetag").text = etag_for(resource)
        ET.SubElement(propstat, f"{{{DAV_NS}}}status").text = "HTTP/1.1 200 OK"
        return response
