from typing import Iterable

from pydantic import BaseModel
from sqlalchemy import inspect

from ..errors import InvalidRequest


def apply_patch(row, patch: BaseModel, allowed: Iterable[str]) -> dict:
    """Copy the fields present in ``patch`` onto ``row``.

    Only names in ``allowed`` are written; anything else in the patch is
    ignored. An explicit ``null`` for a NOT NULL column is an
    ``InvalidRequest``. Returns the ``{field: {"before", "after"}}`` diff of
    what changed.
    """
    allowed = set(allowed)
    columns = inspect(row).mapper.columns
    values = {k: v for k, v in patch.model_dump(exclude_unset=True).items() if k in allowed}
    for field, value in values.items():
        if value is None and field in columns and not columns[field].nullable:
            raise InvalidRequest(f"{field} cannot be null")
    changes = {}
    for field, value in values.items():
        before = getattr(row, field)
        if before != value:
            setattr(row, field, value)
            changes[field] = {"before": before, "after": value}
    return changes
