import logging

from . import config
from .actions import (
    CategoryAction,
    ClaimChange,
    ImageAction,
    ImageMetadata,
    ImageOperation,
    StructuredDataAction,
    StructuredDataProperty,
    WikidataAction,
    WikidataOperation,
    link_dependencies,
    validate_dependencies,
)
from .errors import PreconditionError
from .resolver import extract_commons_category, is_performer, performer_description
from .utils import is_qid, normalize_category_name, pick_label

logger = logging.getLogger(__name__)


def category_action_id(name):
    return f"category-{normalize_category_name(name).replace(' ', '_')}"


def p373_action_id(qid):
    return f"wikidata-{qid}-p373"


class PublishPlanBuilder:
    """Collects the actions needed to publish performers, bands and images.

    Ids are deterministic, so adding the same category or entity twice keeps
    the first action.
    """

    def __init__(self, resolver, wikidata=None):
        self.resolver = resolver
        self.wikidata = wikidata or resolver.wikidata
        self._actions = []
        self._ids = set()

    def add_action(self, action):
        if action.id in self._ids:
            logger.debug("Action %s already planned", action.id)
            return False
        self._ids.add(action.id)
        self._actions.append(action)
        return True

    def _category_action(self, name, description, entity_id, parent_category=None):
        action = CategoryAction(
            id=category_action_id(name),
            category_name=name,
            description=description,
            parent_category=parent_category,
            entity_id=entity_id,
        )
        self.add_action(action)
        return action

    def _p373_action(self, entity, entity_type, category_name, depends_on=None):
        qid = entity["id"]
        action = WikidataAction(
            id=p373_action_id(qid),
            entity_id=qid,
            entity_type=entity_type,
            entity_label=pick_label(entity) or qid,
            action=WikidataOperation.UPDATE,
            changes=[ClaimChange(property=config.P_COMMONS_CATEGORY, new_value=category_name)],
            depends_on=depends_on,
        )
        self.add_action(action)
        return action

    def add_performer(self, entity, parent_category=None):
        """Plan the category and P373 claim for a performer entity; returns the resolved category info."""
        info = self.resolver.resolve_performer(entity)
        category = None
        if info.needs_creation:
            category = self._category_action(info.commons_category, info.description, info.performer_qid, parent_category)
        if extract_commons_category(entity) is None:
            self._p373_action(entity, "person", info.commons_category, depends_on=category.id if category else None)
        return info

    def add_performer_by_qid(self, qid, parent_category=None):
        if not is_qid(qid):
            raise PreconditionError(f"Not a Wikidata item id: {qid}")
        entity = self.wikidata.get_entity(qid)
        if entity is None:
            raise PreconditionError(f"Wikidata item {qid} does not exist")
        if not is_performer(entity):
            logger.warning("%s is not an instance of human; planning it as a performer anyway", qid)
        return self.add_performer(entity, parent_category)

    def add_band(self, entity, parent_category=None):
        qid = entity["id"]
        name = pick_label(entity) or qid
        check = self.resolver.check_band_disambiguation(name, qid)
        if check.reason:
            logger.info("Band %s: %s", name, check.reason)
        category = None
        exists, _ = self.resolver.check_exists(check.suggested_name)
        if not exists:
            category = self._category_action(
                check.suggested_name, performer_description(qid, name), qid, parent_category
            )
        if extract_commons_category(entity) is None:
            self._p373_action(entity, "organization", check.suggested_name, depends_on=category.id if category else None)
        return check

    def add_image(self, image_id, filename, source_path=None, metadata=None, captions=None, depicts=()):
        """Plan an upload and the structured data that follows it."""
        upload = ImageAction(
            id=f"image-{image_id}",
            image_id=image_id,
            filename=filename,
            action=ImageOperation.UPLOAD,
            metadata=metadata or ImageMetadata(),
            source_path=source_path,
        )
        self.add_action(upload)
        properties = []
        if captions:
            properties.append(StructuredDataProperty(property="labels", value=captions))
        depicted = [item for item in depicts if is_qid(item.get("qid") if isinstance(item, dict) else item)]
        if depicted:
            properties.append(StructuredDataProperty(property=config.P_DEPICTS, value=depicted))
        if properties:
            self.add_action(
                StructuredDataAction(
                    id=f"sdc-{image_id}",
                    image_id=image_id,
                    properties=properties,
                    depends_on=upload.id,
                )
            )
        return upload

    def build(self):
        actions = list(self._actions)
        link_dependencies(actions)
        validate_dependencies(actions)
        return actions
