"""Translate domain values into the Wikibase wire formats.

``format_claim_value`` produces the JSON value expected by ``wbcreateclaim``;
``build_statement`` wraps a value in the statement template accepted by
``wbeditentity`` (used for entity creation and MediaInfo depicts).
"""

from typing import Any

from . import config
from .utils import is_qid, qid_numeric


def time_value(date_string: str) -> dict[str, Any]:
    """Return a day-precision Gregorian time value for a YYYY-MM-DD string."""
    return {
        "time": f"+{date_string}T00:00:00Z",
        "timezone": 0,
        "before": 0,
        "after": 0,
        "precision": config.DAY_PRECISION,
        "calendarmodel": config.GREGORIAN_CALENDAR,
    }


def entity_value(qid: str) -> dict[str, Any]:
    qid = qid.strip()
    return {"entity-type": "item", "numeric-id": qid_numeric(qid), "id": qid}


def is_date_string(value: Any) -> bool:
    return isinstance(value, str) and bool(config.DATE_PATTERN.fullmatch(value.strip()))


def format_claim_value(property_id: str, value: Any) -> Any:
    """Resolve a raw claim value into the datavalue payload for the given property.

    Dates are only converted for time-valued properties; a string that is
    exactly a Q-id becomes an item reference; any other string is submitted
    as-is. Pre-built dict payloads pass through untouched.
    """
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if property_id in config.TIME_PROPERTIES and is_date_string(stripped):
            return time_value(stripped)
        if is_qid(stripped):
            return entity_value(stripped)
        return value
    raise TypeError(f"Unsupported claim value for {property_id}: {value!r}")


def datavalue_type(value: Any) -> str:
    if isinstance(value, dict):
        if "time" in value:
            return "time"
        if "numeric-id" in value or "entity-type" in value:
            return "wikibase-entityid"
        if "text" in value and "language" in value:
            return "monolingualtext"
        if "amount" in value:
            return "quantity"
        if "latitude" in value:
            return "globecoordinate"
    return "string"


def build_snak(property_id: str, value: Any) -> dict[str, Any]:
    formatted = format_claim_value(property_id, value)
    return {
        "snaktype": "value",
        "property": property_id,
        "datavalue": {"value": formatted, "type": datavalue_type(formatted)},
    }


def build_statement(property_id: str, value: Any, rank: str = "normal") -> dict[str, Any]:
    return {
        "mainsnak": build_snak(property_id, value),
        "type": "statement",
        "rank": rank,
    }


def statement_entity_id(statement: dict[str, Any]) -> Any:
    """Return the referenced Q-id of an item-valued statement, if any."""
    value = (statement.get("mainsnak") or {}).get("datavalue", {}).get("value")
    if isinstance(value, dict):
        if value.get("id"):
            return value["id"]
        if value.get("numeric-id") is not None:
            return f"Q{value['numeric-id']}"
    return None
