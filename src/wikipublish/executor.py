import logging
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from . import config
from .actions import (
    Action,
    CategoryAction,
    ImageAction,
    ImageOperation,
    StructuredDataAction,
    WikidataAction,
    WikidataOperation,
)
from .caching import CacheType
from .claims import build_statement, format_claim_value
from .commons import build_category_wikitext
from .errors import ClaimBatchError, PreconditionError, PublishError, UnresolvedReferenceError
from .resolver import CategoryResolver
from .utils import category_title, is_qid, normalize_category_name, pick_label

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    page_id: Optional[int] = None
    entity_id: Optional[str] = None
    created: bool = False
    message: Optional[str] = None


@dataclass
class ExecutorContext:
    """Domain state the executor reads while publishing.

    ``people`` and ``organizations`` are Wikidata entity documents;
    ``get_image_data`` maps an image id to a path or a binary file object.
    """

    people: list[dict] = field(default_factory=list)
    organizations: list[dict] = field(default_factory=list)
    get_image_data: Optional[Callable[[str], Any]] = None

    def find_person(self, qid):
        return next((person for person in self.people if person.get("id") == qid), None)

    def find_organization(self, ref):
        for org in self.organizations:
            if org.get("id") == ref or pick_label(org) == ref:
                return org
        return None


def image_page_text(metadata):
    """Return the description page text for an upload, composing one from metadata when none is given."""
    if metadata.wikitext:
        return metadata.wikitext
    lines = []
    if metadata.description or metadata.date:
        lines.append("== {{int:filedesc}} ==")
        lines.append("{{Information")
        lines.append(f"|description={metadata.description or ''}")
        lines.append(f"|date={metadata.date or ''}")
        lines.append("}}")
        lines.append("")
    for name in metadata.categories:
        lines.append(f"[[{category_title(name)}]]")
    return "\n".join(lines)


def caption_value_problem(value):
    """Return why ``value`` cannot be written as captions, or None when it can."""
    if isinstance(value, dict):
        if all(isinstance(lang, str) and isinstance(text, str) for lang, text in value.items()):
            return None
        return "captions must map language codes to text"
    if isinstance(value, (list, tuple)):
        for item in value:
            if not isinstance(item, dict) or not isinstance(item.get("language"), str):
                return "each caption needs a language"
            if not isinstance(item.get("text", item.get("value")), str):
                return f"caption for {item['language']} has no text"
        return None
    return f"captions must be a mapping or a list, not {type(value).__name__}"


def depicts_value_problem(value):
    """Return why ``value`` cannot be written as depicts statements, or None when it can."""
    if not isinstance(value, (list, tuple)):
        return f"depicts must be a list, not {type(value).__name__}"
    bad = [item for item in value if not is_qid(item.get("qid") if isinstance(item, dict) else item)]
    if bad:
        return f"depicts entries without a Wikidata item id: {bad!r}"
    return None


class ActionExecutor:
    """Turns one action into the Commons and Wikidata calls that realise it."""

    def __init__(self, commons, wikidata, resolver=None, cache=None):
        self.commons = commons
        self.wikidata = wikidata
        self.cache = cache if cache is not None else commons.cache
        self.resolver = resolver or CategoryResolver(commons, wikidata, self.cache)

    def execute(self, action: Action, context: Optional[ExecutorContext] = None) -> ExecutionResult:
        context = context or ExecutorContext()
        if isinstance(action, CategoryAction):
            return self.execute_category(action)
        if isinstance(action, WikidataAction):
            return self.execute_wikidata(action, context)
        if isinstance(action, ImageAction):
            return self.execute_image(action, context)
        if isinstance(action, StructuredDataAction):
            return self.execute_structured_data(action)
        raise TypeError(f"Unsupported action type: {type(action).__name__}")

    # Category

    def execute_category(self, action: CategoryAction) -> ExecutionResult:
        name = normalize_category_name(action.category_name)
        if not name:
            raise PreconditionError(f"Action {action.id} has no category name")
        wikitext = build_category_wikitext(action.description, action.parents)
        result = self.commons.create_category(name, wikitext)
        created = bool(result.get("success"))
        if not created and not result.get("exists"):
            raise PublishError(f"Creating {category_title(name)} failed")
        self.cache.invalidate(CacheType.COMMONS_CATEGORY_EXISTS, name)
        self.cache.invalidate(CacheType.COMMONS_CATEGORY, name)
        if created:
            self.cache.set(CacheType.COMMONS_CATEGORY_CREATED, name, {"entity_id": action.entity_id})
        action.exists = True
        logger.debug("Category %s done; invalidated cached lookups", name)
        return ExecutionResult(
            page_id=result.get("pageid"),
            entity_id=action.entity_id,
            created=created,
            message=None if created else f"{category_title(name)} already exists",
        )

    # Wikidata

    def execute_wikidata(self, action: WikidataAction, context: ExecutorContext) -> ExecutionResult:
        if action.action is WikidataOperation.CREATE:
            return self._create_entity(action, context)
        return self._update_claims(action, context)

    def _create_entity(self, action: WikidataAction, context: ExecutorContext) -> ExecutionResult:
        if is_qid(action.entity_id) and self.wikidata.entity_exists(action.entity_id):
            raise PreconditionError(f"Entity already exists: {action.entity_id}")
        lang = self.wikidata.lang
        person = context.find_person(action.entity_id)
        description = action.description
        if description is None and person:
            description = (person.get("descriptions") or {}).get(lang, {}).get("value")
        data = {
            "labels": {lang: {"language": lang, "value": action.entity_label}},
            "descriptions": {lang: {"language": lang, "value": description or ""}},
            "claims": [],
        }
        properties = {change.property for change in action.changes}
        if action.entity_type == "person" and config.P_INSTANCE_OF not in properties:
            data["claims"].append(build_statement(config.P_INSTANCE_OF, config.Q_HUMAN))
        for change in action.changes:
            data["claims"].append(build_statement(change.property, change.new_value))
        new_id = self.wikidata.create_entity(data)
        for change in action.changes:
            change.submitted = True
        action.entity_id = new_id
        return ExecutionResult(entity_id=new_id, created=True)

    def resolve_claim_value(self, action: WikidataAction, change, context: ExecutorContext):
        """Resolve a change's raw value to the datavalue submitted to Wikidata."""
        value = change.new_value
        if change.property == config.P_COMMONS_CATEGORY:
            org = context.find_organization(action.entity_id)
            person = context.find_person(action.entity_id)
            if org is not None:
                value = self.resolver.check_band_disambiguation(
                    pick_label(org) or action.entity_label, action.entity_id
                ).suggested_name
            elif person is not None:
                info = self.resolver.resolve_performer(person)
                logger.info("Using Commons category %s for %s", info.commons_category, info.performer_name)
                value = info.commons_category
        elif change.property == config.P_PARTICIPANT:
            org = context.find_organization(value)
            if org is not None and is_qid(org.get("id")):
                value = org["id"]
            elif not is_qid(value):
                raise UnresolvedReferenceError(f"Organisation {value!r} has no Wikidata item")
        elif change.property == config.P_HAS_PART and isinstance(value, str) and not is_qid(value):
            person = self.wikidata.find_entity_by_label(value, instance_of=(config.Q_HUMAN,))
            if person is None:
                raise UnresolvedReferenceError(
                    f"Person {value!r} needs to be created on Wikidata before linking"
                )
            value = person["id"]
        return format_claim_value(change.property, value)

    def _update_claims(self, action: WikidataAction, context: ExecutorContext) -> ExecutionResult:
        if not is_qid(action.entity_id):
            raise PreconditionError(f"Action {action.id} has no Wikidata entity to update")
        failures = {}
        submitted = 0
        for change in action.pending_changes:
            try:
                value = self.resolve_claim_value(action, change, context)
                self.wikidata.create_claim(action.entity_id, change.property, value)
            except PublishError as exc:
                logger.error("Claim %s on %s failed: %s", change.property, action.entity_id, exc)
                failures[change.property] = str(exc)
                continue
            change.submitted = True
            submitted += 1
        self.wikidata.invalidate_entity(action.entity_id)
        if failures:
            raise ClaimBatchError(action.entity_id, failures)
        return ExecutionResult(entity_id=action.entity_id, message=f"{submitted} claim(s) added")

    # Images

    def _open_source(self, action: ImageAction, context: ExecutorContext):
        if action.source_path:
            if not os.path.isfile(action.source_path) or not os.access(action.source_path, os.R_OK):
                raise PreconditionError(f"Image file {action.source_path} is not readable")
            return action.source_path
        if context.get_image_data is not None:
            data = context.get_image_data(action.image_id)
            if data is not None:
                return data
        raise PreconditionError(f"No image file found for {action.image_id}")

    def execute_image(self, action: ImageAction, context: ExecutorContext) -> ExecutionResult:
        if action.action is ImageOperation.UPDATE_METADATA:
            if not action.metadata.wikitext:
                raise PreconditionError(f"No wikitext available to update {action.filename}")
            self.commons.edit_page(action.filename, action.metadata.wikitext)
            return ExecutionResult(page_id=action.commons_page_id)

        if not action.filename:
            raise PreconditionError(f"Image {action.image_id} has no target filename")
        source = self._open_source(action, context)
        page_id = self.commons.upload(source, action.filename, image_page_text(action.metadata))
        action.commons_page_id = page_id
        if action.metadata.set_as_main_image:
            self._add_main_image_claim(action, context)
        return ExecutionResult(page_id=page_id, created=True)

    def _add_main_image_claim(self, action: ImageAction, context: ExecutorContext):
        entity_id = action.metadata.main_image_entity
        if not entity_id:
            org = next((org for org in context.organizations if is_qid(org.get("id"))), None)
            entity_id = org["id"] if org else None
        if not entity_id:
            logger.warning("%s is flagged as main image but no entity is known", action.filename)
            return
        try:
            self.wikidata.create_claim(entity_id, config.P_IMAGE, format_claim_value(config.P_IMAGE, action.filename))
            self.wikidata.invalidate_entity(entity_id)
        except PublishError as exc:
            logger.error("Could not set %s as main image of %s: %s", action.filename, entity_id, exc)

    # Structured data

    def execute_structured_data(self, action: StructuredDataAction) -> ExecutionResult:
        if not action.commons_page_id:
            raise PreconditionError(f"Image {action.image_id} must be uploaded before adding structured data")
        pending = [prop for prop in action.properties if prop.needs_update]
        unsupported = [
            prop.property
            for prop in pending
            if prop.property not in config.CAPTION_PROPERTIES and prop.property != config.P_DEPICTS
        ]
        if unsupported:
            raise PreconditionError(f"Unsupported structured data properties: {', '.join(unsupported)}")
        # A malformed depicts list would otherwise be diffed as empty and wipe existing statements
        for prop in pending:
            if prop.property in config.CAPTION_PROPERTIES:
                problem = caption_value_problem(prop.value)
            else:
                problem = depicts_value_problem(prop.value)
            if problem:
                raise PreconditionError(f"Image {action.image_id}: {problem}")
        logger.info("Publishing structured data for image %s (M%s)", action.image_id, action.commons_page_id)
        for prop in pending:
            if prop.property in config.CAPTION_PROPERTIES:
                self.commons.set_captions(action.commons_page_id, prop.value)
            else:
                self.commons.set_depicts(action.commons_page_id, prop.value)
            prop.needs_update = False
        return ExecutionResult(page_id=action.commons_page_id)
