"""
Helpers shared by the API blueprints.

- scoped_query(): vendor-scoped list queries (?vendorId=) for any model with vendor_id.
- status filters for list endpoints.
"""

from __future__ import annotations

from enum import Enum
from typing import Type

from flask import request

from ..exceptions import ValidationError
from ..security import Actor, Capability, resolve_vendor_scope
from ..utils import parse_optional_int


def scoped_query(model, actor: Actor):
    """
    model.query restricted to what the actor may see.

    ADMIN may narrow with ?vendorId=; everyone else is pinned to their own vendor
    (asking for another vendor -> NotFoundError).
    """
    requested = parse_optional_int(request.args.get("vendorId"))
    query = model.query

    if actor.can(Capability.VIEW_ALL_VENDORS):
        if requested is not None:
            query = query.filter(model.vendor_id == requested)
        return query

    return query.filter(model.vendor_id == resolve_vendor_scope(actor, requested))


def status_filter(query, model, enum_cls: Type[Enum]):
    raw = (request.args.get("status") or "").strip()
    if not raw:
        return query
    try:
        status = enum_cls(raw)
    except ValueError:
        raise ValidationError("Unknown status", details={"field": "status"})
    return query.filter(model.status == status)
