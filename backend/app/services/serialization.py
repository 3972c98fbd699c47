"""Row → JSON-ready dict helpers shared by the route modules."""
from decimal import Decimal
from typing import Any, Iterable, Optional


def _value(v: Any) -> Any:
    # Numeric columns keep their exact decimal text on the wire
    if isinstance(v, Decimal):
        return str(v)
    return v


def row_to_dict(obj, exclude: Iterable[str] = ()) -> Optional[dict]:
    if obj is None:
        return None
    skip = set(exclude)
    return {
        c.name: _value(getattr(obj, c.name))
        for c in obj.__table__.columns
        if c.name not in skip
    }


def rows_to_dicts(rows, exclude: Iterable[str] = ()) -> list[dict]:
    return [row_to_dict(r, exclude) for r in rows]

