"""Errors raised by the routing, isolation and backup layers.

Components raise these; the application converts them into HTTP responses
(see ``server.py``). Messages of ``PathRejected`` and ``TenantUnknown`` are
meant for logs only and are never sent to the client.
"""

from __future__ import annotations


class WiddlerError(Exception):
    """Base class for all widdler errors."""


class AuthenticationFailure(WiddlerError):
    """Missing or wrong credentials."""


class PathRejected(WiddlerError):
    """Forbidden filename or directory traversal in the request path."""


class PathEscape(PathRejected):
    """Canonical path is not inside the tenant root."""


class TenantUnknown(WiddlerError):
    """No handler is provisioned for an authenticated identity."""


class FilesystemFailure(WiddlerError):
    """Directory creation, listing, open, read or write failed."""


class BackupFailure(FilesystemFailure):
    """A snapshot could not be written; the guarded write must not happen."""


class TemplateFailure(WiddlerError):
    """A page template could not be rendered."""


class RequestTimeout(WiddlerError):
    """The client did not deliver the request body in time."""
