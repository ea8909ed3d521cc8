"""Backend for widdler, a multi-tenant TiddlyWiki server.

This package intentionally keeps FastAPI route handlers thin:
- tenant handlers + per-tenant sessions
- safe path handling for every request
- write-time snapshots with rotation and optional gzip

Security note:
Each authenticated identity only ever sees its own directory. Rejected paths
and unknown tenants answer with a plain 404 so a client cannot tell them apart.
"""
