from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from material_tracker.errors import RecordNotFoundError


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def get_actor(request: Request) -> str | None:
    actor = (request.headers.get('x-actor') or '').strip()
    if actor:
        return actor
    ip = get_client_ip(request)
    return f'ip:{ip}' if ip else None


@contextmanager
def service_errors(db: Session) -> Iterator[None]:
    """Roll back and translate service errors into HTTP responses."""
    try:
        yield
    except RecordNotFoundError as exc:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
