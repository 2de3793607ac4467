"""Propagation of request metadata onto outbound HTTP calls."""

from __future__ import annotations

from collections.abc import Mapping

from services.common.middleware import get_correlation_id


CORRELATION_HEADER = "X-Correlation-ID"


def inject_correlation_id(headers: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a copy of ``headers`` carrying the current correlation ID.

    An explicit ``X-Correlation-ID`` is kept; outside a request the
    headers are returned unchanged.
    """
    result = dict(headers or {})
    correlation_id = get_correlation_id()
    if correlation_id and CORRELATION_HEADER not in result:
        result[CORRELATION_HEADER] = correlation_id
    return result


__all__ = ["CORRELATION_HEADER", "inject_correlation_id"]
