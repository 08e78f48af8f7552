"""Process-wide query language service.

A KQL parser is an optional capability supplied by the host application.
Without one, or when it cannot be constructed, analysis runs on the bundled
:class:`~schema_engine.analyzer.lexical.LexicalLanguageService`.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable

from ._protocols import QueryLanguageService

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_service: QueryLanguageService | None = None
_primary: Callable[[], QueryLanguageService] | None = None


def register_language_service(factory_fn: Callable[[], QueryLanguageService]) -> None:
    """Install *factory_fn* as the builder of the primary KQL parser.

    The service is built on the next :func:`get_language_service` call.
    """
    global _primary, _service
    with _lock:
        _primary = factory_fn
        _service = None


def get_language_service() -> QueryLanguageService:
    """Return the shared service, building it on first use.

    A registered parser that fails to build is logged and replaced by the
    lexical analyzer for the rest of the process.
    """
    global _service
    service = _service
    if service is not None:
        return service

    with _lock:
        if _service is None:
            _service = _build_service()
        return _service


def _build_service() -> QueryLanguageService:
    from .lexical import LexicalLanguageService

    if _primary is None:
        return LexicalLanguageService()
    try:
        return _primary()
    except Exception as exc:  # noqa: BLE001
        logger.warning("KQL parser unavailable (%s); using the lexical analyzer", exc)
        return LexicalLanguageService()


def reset_language_service() -> None:
    """Forget the registered parser and the shared service.  Used by tests."""
    global _service, _primary
    with _lock:
        _service = None
        _primary = None
