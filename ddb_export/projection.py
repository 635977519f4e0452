from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Sequence

from ddb_export.errors import ProjectionError

# DynamoDB attribute-value type descriptors we know how to flatten
_SCALAR_TYPES = ("S", "N", "BOOL", "NULL")


def _stringify(name: str, value: Any) -> str:
    # bool before int: bool is an int subclass
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float, Decimal)):
        return str(value)

    if isinstance(value, dict) and len(value) == 1:
        kind, inner = next(iter(value.items()))
        if kind in _SCALAR_TYPES:
            if kind == "NULL":
                return ""
            if kind == "BOOL":
                return "true" if inner else "false"
            return str(inner)
        raise ProjectionError(
            f"Attribute '{name}' has unsupported type '{kind}'"
        )

    raise ProjectionError(
        f"Attribute '{name}' has unsupported value of type "
        f"{type(value).__name__}"
    )


def project(
    record: Mapping[str, Any], columns: Optional[Sequence[str]] = None
) -> Dict[str, str]:
    """
    Flatten one scanned item into a column -> string row.

    - columns given: exactly those columns in that order, "" when absent
    - columns omitted: the item's own keys in the item's order
    """
    if columns is None:
        return {name: _stringify(name, v) for name, v in record.items()}

    row: Dict[str, str] = {}
    for column in columns:
        if column in record:
            row[column] = _stringify(column, record[column])
        else:
            row[column] = ""
    return row
