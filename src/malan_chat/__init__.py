"""Chat server package forwarding messages and attachments to a hosted LLM.

This package provides a FastAPI application factory named ``create_app``
inside ``malan_chat/server.py`` (see :func:`create_app`).

Typical usage
-------------
from malan_chat import create_app
app = create_app()

or, from the provided launcher:

python scripts/run_server.py --host 127.0.0.1 --port 5433
"""

from __future__ import annotations

__all__ = ["create_app", "__version__", "get_version"]

# ---------------------------------------------------------------------
# Version handling
# ---------------------------------------------------------------------
__version__ = "0.1.0"


def get_version() -> str:
    """Return the package version."""
    return __version__


def create_app(*args, **kwargs):
    """Return a configured FastAPI application.

    This forwards to :func:`malan_chat.server.create_app`; the import is
    deferred so ``import malan_chat`` stays cheap for metadata-only users.
    """
    from .server import create_app as _create_app

    return _create_app(*args, **kwargs)
