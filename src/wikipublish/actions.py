from __future__ import annotations

import copy
import dataclasses
import json
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, Optional, Union

import jsonschema

from .errors import PlanValidationError
from .utils import is_pid, is_qid, utc_now_iso


class ActionStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    ERROR = "error"
    SKIPPED = "skipped"


TERMINAL_STATUSES = {ActionStatus.COMPLETED, ActionStatus.SKIPPED}


@dataclass
class ClaimChange:
    property: str
    new_value: Any
    old_value: Any = None
    submitted: bool = False


@dataclass
class ImageMetadata:
    description: Optional[str] = None
    categories: list[str] = field(default_factory=list)
    depicts: list[dict[str, Any]] = field(default_factory=list)
    date: Optional[str] = None
    wikitext: Optional[str] = None
    set_as_main_image: bool = False
    main_image_entity: Optional[str] = None


@dataclass
class StructuredDataProperty:
    property: str
    value: Any
    needs_update: bool = True


@dataclass(kw_only=True)
class Action:
    id: str
    status: ActionStatus = ActionStatus.PENDING
    error: Optional[str] = None
    depends_on: Optional[str] = None

    kind: ClassVar[str] = ""

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(kw_only=True)
class CategoryAction(Action):
    category_name: str
    parent_category: Optional[str] = None
    description: Optional[str] = None
    additional_parents: list[str] = field(default_factory=list)
    exists: bool = False
    entity_id: Optional[str] = None

    kind: ClassVar[str] = "category"

    @property
    def parents(self) -> list[str]:
        out = [self.parent_category] if self.parent_category else []
        out.extend(parent for parent in self.additional_parents if parent not in out)
        return out


class WikidataOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"


@dataclass(kw_only=True)
class WikidataAction(Action):
    entity_type: str
    entity_label: str
    action: WikidataOperation
    entity_id: str = ""
    changes: list[ClaimChange] = field(default_factory=list)
    description: Optional[str] = None

    kind: ClassVar[str] = "wikidata"

    @property
    def pending_changes(self) -> list[ClaimChange]:
        return [change for change in self.changes if not change.submitted]


class ImageOperation(str, Enum):
    UPLOAD = "upload"
    UPDATE_METADATA = "update-metadata"


@dataclass(kw_only=True)
class ImageAction(Action):
    image_id: str
    filename: str
    action: ImageOperation
    metadata: ImageMetadata = field(default_factory=ImageMetadata)
    source_path: Optional[str] = None
    commons_page_id: Optional[int] = None

    kind: ClassVar[str] = "image"


@dataclass(kw_only=True)
class StructuredDataAction(Action):
    image_id: str
    commons_page_id: int = 0
    properties: list[StructuredDataProperty] = field(default_factory=list)

    kind: ClassVar[str] = "structured-data"


ACTION_TYPES: dict[str, type[Action]] = {
    cls.kind: cls for cls in (CategoryAction, WikidataAction, ImageAction, StructuredDataAction)
}


# Schema validation


def _default_schema_path() -> str:
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), "schemas", "publish_plan.schema.json")


def load_schema(path: Optional[str] = None) -> dict[str, Any]:
    with open(path or _default_schema_path(), "r", encoding="utf-8") as handle:
        return json.load(handle)


def validate_against_schema(obj: dict[str, Any], schema: dict[str, Any]) -> None:
    validator = jsonschema.Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(obj), key=lambda e: len(list(e.absolute_path)))
    if errors:
        error = errors[0]
        details = {
            "path": list(error.absolute_path),
            "schema_path": list(error.absolute_schema_path),
            "message": error.message,
        }
        raise PlanValidationError("SCHEMA_VIOLATION", "Plan does not match the publish plan schema.", details)


def _parse_input(source: Union[str, os.PathLike, dict[str, Any]]) -> dict[str, Any]:
    if isinstance(source, os.PathLike) or (isinstance(source, str) and not source.lstrip().startswith("{")):
        try:
            with open(source, "r", encoding="utf-8") as handle:
                source = handle.read()
        except OSError as exc:
            raise PlanValidationError("UNREADABLE", "Plan file could not be read.", {"path": str(source), "error": str(exc)})
    if isinstance(source, str):
        try:
            source = json.loads(source)
        except json.JSONDecodeError as exc:
            details = {"message": exc.msg, "line": exc.lineno, "column": exc.colno}
            raise PlanValidationError("INVALID_JSON", "Plan is not valid JSON.", details)
    if not isinstance(source, dict):
        raise PlanValidationError("SCHEMA_VIOLATION", "Top-level plan must be an object.", {"value": source})
    return source


def _minimal_normalize(plan: dict[str, Any]) -> dict[str, Any]:
    normalized = copy.deepcopy(plan)
    for item in normalized.get("actions") or []:
        if not isinstance(item, dict):
            continue
        for key in ("entity_id", "main_image_entity"):
            value = item.get(key)
            if isinstance(value, str) and is_qid(value.strip().upper()):
                item[key] = value.strip().upper()
        for change in item.get("changes") or []:
            if isinstance(change, dict) and isinstance(change.get("property"), str):
                change["property"] = change["property"].strip().upper()
        metadata = item.get("metadata")
        if isinstance(metadata, dict):
            for depicted in metadata.get("depicts") or []:
                if isinstance(depicted, dict) and isinstance(depicted.get("qid"), str):
                    depicted["qid"] = depicted["qid"].strip().upper()
        for prop in item.get("properties") or []:
            if isinstance(prop, dict) and isinstance(prop.get("property"), str):
                name = prop["property"].strip()
                prop["property"] = name.upper() if is_pid(name.upper()) else name.lower()
            if isinstance(prop, dict) and prop.get("property") == "P180" and isinstance(prop.get("value"), list):
                prop["value"] = [_normalize_depicted(depicted) for depicted in prop["value"]]
    return normalized


def _normalize_depicted(depicted: Any) -> Any:
    if isinstance(depicted, str):
        return depicted.strip().upper()
    if isinstance(depicted, dict) and isinstance(depicted.get("qid"), str):
        return {**depicted, "qid": depicted["qid"].strip().upper()}
    return depicted


def _validate_ids(plan: dict[str, Any]) -> None:
    for idx, item in enumerate(plan["actions"]):
        if item["type"] != "wikidata":
            continue
        entity_id = item.get("entity_id") or ""
        if item["action"] == "update" and not is_qid(entity_id) and not item.get("depends_on"):
            raise PlanValidationError(
                "INVALID_ID",
                "Wikidata updates need an entity id or a dependency that creates one.",
                {"field": f"actions[{idx}].entity_id", "value": entity_id},
            )
        for change_idx, change in enumerate(item.get("changes") or []):
            if not is_pid(change["property"]):
                raise PlanValidationError(
                    "INVALID_ID",
                    "Invalid PID.",
                    {"field": f"actions[{idx}].changes[{change_idx}].property", "value": change["property"]},
                )


# Construction and serialisation


def _build_metadata(data: Optional[dict[str, Any]]) -> ImageMetadata:
    return ImageMetadata(**(data or {}))


def action_from_dict(data: dict[str, Any]) -> Action:
    """Build an action object from its plan representation (already schema-validated)."""
    payload = dict(data)
    kind = payload.pop("type")
    cls = ACTION_TYPES.get(kind)
    if cls is None:
        raise PlanValidationError("UNKNOWN_TYPE", "Unknown action type.", {"type": kind})
    payload["status"] = ActionStatus(payload.get("status") or ActionStatus.PENDING.value)
    if cls is WikidataAction:
        payload["action"] = WikidataOperation(payload["action"])
        payload["changes"] = [ClaimChange(**change) for change in payload.get("changes") or []]
    elif cls is ImageAction:
        payload["action"] = ImageOperation(payload["action"])
        payload["metadata"] = _build_metadata(payload.get("metadata"))
    elif cls is StructuredDataAction:
        payload["properties"] = [StructuredDataProperty(**prop) for prop in payload.get("properties") or []]
    return cls(**payload)


def action_to_dict(action: Action) -> dict[str, Any]:
    payload: dict[str, Any] = {"type": action.kind}
    for key, value in dataclasses.asdict(action).items():
        if isinstance(value, Enum):
            value = value.value
        payload[key] = value
    return payload


def dump_plan(actions: list[Action]) -> dict[str, Any]:
    return {"generated_at": utc_now_iso(), "actions": [action_to_dict(action) for action in actions]}


# Dependencies


def link_dependencies(actions: list[Action]) -> list[Action]:
    """Point structured-data actions without an explicit dependency at the upload of the same image."""
    uploads = {}
    for action in actions:
        if isinstance(action, ImageAction) and action.action is ImageOperation.UPLOAD:
            uploads.setdefault(action.image_id, action.id)
    for action in actions:
        if isinstance(action, StructuredDataAction) and not action.depends_on:
            action.depends_on = uploads.get(action.image_id)
    return actions


def validate_dependencies(actions: list[Action]) -> None:
    """Check ids are unique and dependencies are known, not self-referential, and one level deep."""
    by_id: dict[str, Action] = {}
    for action in actions:
        if action.id in by_id:
            raise PlanValidationError("DUPLICATE_ID", "Action ids must be unique.", {"id": action.id})
        by_id[action.id] = action
    for action in actions:
        dependency_id = action.depends_on
        if not dependency_id:
            continue
        if dependency_id == action.id:
            raise PlanValidationError("SELF_DEPENDENCY", "An action cannot depend on itself.", {"id": action.id})
        dependency = by_id.get(dependency_id)
        if dependency is None:
            raise PlanValidationError(
                "UNKNOWN_DEPENDENCY",
                "Dependency refers to an unknown action.",
                {"id": action.id, "depends_on": dependency_id},
            )
        if dependency.depends_on:
            raise PlanValidationError(
                "DEPENDENCY_CHAIN",
                "Dependencies may only be one level deep.",
                {"id": action.id, "depends_on": dependency_id, "chained_to": dependency.depends_on},
            )


def build_actions(items: list[dict[str, Any]]) -> list[Action]:
    actions = [action_from_dict(item) for item in items]
    link_dependencies(actions)
    validate_dependencies(actions)
    return actions


def load_plan(
    source: Union[str, os.PathLike, dict[str, Any]],
    schema: Optional[dict[str, Any]] = None,
) -> list[Action]:
    """Load a plan from a path, a JSON string or a dict and return validated actions."""
    parsed = _parse_input(source)
    plan = _minimal_normalize(parsed)
    validate_against_schema(plan, schema or load_schema())
    _validate_ids(plan)
    return build_actions(plan["actions"])


def write_plan(actions: list[Action], path: Union[str, Path]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(dump_plan(actions), handle, ensure_ascii=False, indent=2)
        handle.write("\n")
