from __future__ import annotations

from pathlib import Path
import xml.etree.ElementTree as ET

import pytest

from widdler_backend.dav import DavHandler, DavRequest, etag_for


@pytest.fixture
def root(tmp_path: Path) -> Path:
    (tmp_path / "wiki.html").write_text("<html>v1</html>")
    return tmp_path


@pytest.fixture
def dav(root: Path) -> DavHandler:
    return DavHandler(root)


def test_options_advertises_dav(dav: DavHandler):
    response = dav.serve(DavRequest("OPTIONS", "/wiki.html"))
    assert response.status_code == 200
    assert response.headers["dav"] == "1, 2"
    assert "PUT" in response.headers["allow"]


def test_get_returns_content_and_etag(dav: DavHandler, root: Path):
    response = dav.serve(DavRequest("GET", "/wiki.html"))
    assert response.status_code == 200
    assert response.body == b"<html>v1</html>"
    assert response.headers["etag"] == etag_for(root / "wiki.html")
    assert response.headers["content-type"].startswith("text/html")


def test_get_not_modified(dav: DavHandler, root: Path):
    etag = etag_for(root / "wiki.html")
    response = dav.serve(DavRequest("GET", "/wiki.html", {"if-none-match": etag}))
    assert response.status_code == 304


def test_head(dav: DavHandler):
    response = dav.serve(DavRequest("HEAD", "/wiki.html"))
    assert response.status_code == 200
    assert response.headers["content-length"] == str(len("<html>v1</html>"))
    assert response.body == b""


def test_get_missing(dav: DavHandler):
    assert dav.serve(DavRequest("GET", "/missing.html")).status_code == 404


def test_put_replaces_content(dav: DavHandler, root: Path):
    response = dav.serve(DavRequest("PUT", "/wiki.html", body=b"<html>v2</html>"))
    assert response.status_code == 201
    assert (root / "wiki.html").read_bytes() == b"<html>v2</html>"
    assert response.headers["etag"] == etag_for(root / "wiki.html")
    assert [p.name for p in root.iterdir()] == ["wiki.html"]


def test_put_with_stale_etag_is_refused(dav: DavHandler, root: Path):
    response = dav.serve(DavRequest("PUT", "/wiki.html", {"if-match": '"stale"'}, b"lost"))
    assert response.status_code == 412
    assert (root / "wiki.html").read_text() == "<html>v1</html>"


def test_put_with_current_etag(dav: DavHandler, root: Path):
    etag = etag_for(root / "wiki.html")
    response = dav.serve(DavRequest("PUT", "/wiki.html", {"if-match": etag}, b"saved"))
    assert response.status_code == 201
    assert (root / "wiki.html").read_text() == "saved"


def test_put_into_missing_directory(dav: DavHandler):
    assert dav.serve(DavRequest("PUT", "/nowhere/wiki.html", body=b"x")).status_code == 409


def test_delete(dav: DavHandler, root: Path):
    assert dav.serve(DavRequest("DELETE", "/wiki.html")).status_code == 204
    assert not (root / "wiki.html").exists()
    assert dav.serve(DavRequest("DELETE", "/wiki.html")).status_code == 404


def test_propfind_file(dav: DavHandler):
    response = dav.serve(DavRequest("PROPFIND", "/wiki.html", {"depth": "0"}))
    assert response.status_code == 207

    tree = ET.fromstring(response.body)
    ns = {"D": "DAV:"}
    assert tree.find("D:response/D:href", ns).text == "/wiki.html"
    assert tree.find("D:response/D:propstat/D:prop/D:getcontentlength", ns).text == "15"


def test_propfind_directory_lists_children(dav: DavHandler, root: Path):
    (root / "notes.html").write_text("n")
    response = dav.serve(DavRequest("PROPFIND", "/", {"depth": "1"}))

    tree = ET.fromstring(response.body)
    hrefs = [el.text for el in tree.iter("{DAV:}href")]
    assert hrefs == ["/", "/notes.html", "/wiki.html"]


def test_unsupported_method(dav: DavHandler):
    response = dav.serve(DavRequest("LOCK", "/wiki.html"))
    assert response.status_code == 405
    assert "PROPFIND" in response.headers["allow"]
