import json
import logging

from . import config
from .caching import CacheType
from .errors import PreconditionError, RemoteApiError
from .utils import claim_entity_ids, get_json, is_qid, pick_label, safe_get, wiki_errors

logger = logging.getLogger(__name__)

ENTITY_PROPS = "labels|descriptions|claims"


class WikidataClient:
    """Wikidata access: cached entity/search reads over requests, claim and entity writes via mwclient."""

    def __init__(
        self,
        cache,
        site=None,
        session=None,
        endpoint=config.WIKIDATA_API_ENDPOINT,
        lang=config.DEFAULT_LANGUAGE,
    ):
        self.cache = cache
        self.site = site
        self.session = session
        self.endpoint = endpoint
        self.lang = lang

    def _get(self, params):
        return get_json(params, endpoint=self.endpoint, session=self.session)

    def _require_site(self):
        if self.site is None:
            raise PreconditionError("No authenticated Wikidata site configured for write operations.")
        return self.site

    def _entity_key(self, qid):
        return f"{qid}:{self.lang}"

    # Reads

    def get_entity(self, qid):
        """Return the entity document (labels, descriptions, claims) or None if it does not exist."""
        cached = self.cache.get(CacheType.WIKIDATA_ENTITY, self._entity_key(qid))
        if cached is not None:
            return cached
        payload = self._get(
            {
                "action": "wbgetentities",
                "ids": qid,
                "props": ENTITY_PROPS,
                "languages": self.lang,
            }
        )
        entity = safe_get(payload, "entities", qid)
        exists = isinstance(entity, dict) and "missing" not in entity
        self.cache.set(CacheType.WIKIDATA_ENTITY_EXISTS, qid, exists)
        if not exists:
            return None
        self.cache.set(CacheType.WIKIDATA_ENTITY, self._entity_key(qid), entity)
        return entity

    def entity_exists(self, qid):
        cached = self.cache.get(CacheType.WIKIDATA_ENTITY_EXISTS, qid)
        if cached is not None:
            return cached
        return self.get_entity(qid) is not None

    def search_entities(self, label, limit=10):
        """Return wbsearchentities hits ([{id, label, description}]) for a label."""
        key = f"{self.lang}:{label}"
        cached = self.cache.get(CacheType.WIKIDATA_SEARCH, key)
        if cached is not None:
            return cached
        payload = self._get(
            {
                "action": "wbsearchentities",
                "search": label,
                "language": self.lang,
                "uselang": self.lang,
                "type": "item",
                "limit": limit,
            }
        )
        hits = [
            {"id": hit.get("id"), "label": hit.get("label"), "description": hit.get("description")}
            for hit in payload.get("search") or []
            if is_qid(hit.get("id"))
        ]
        self.cache.set(CacheType.WIKIDATA_SEARCH, key, hits)
        return hits

    def find_entity_by_label(self, label, instance_of=(config.Q_HUMAN,)):
        """Return the first entity whose label matches exactly and whose P31 intersects ``instance_of``."""
        wanted = label.strip().lower()
        for hit in self.search_entities(label):
            if (hit.get("label") or "").strip().lower() != wanted:
                continue
            entity = self.get_entity(hit["id"])
            if entity is None:
                continue
            if (pick_label(entity, self.lang) or "").strip().lower() != wanted:
                continue
            if instance_of and not set(claim_entity_ids(entity, config.P_INSTANCE_OF)) & set(instance_of):
                continue
            return entity
        return None

    def find_entity_by_sitelink(self, title, site="commonswiki"):
        """Return the Q-id whose sitelink on ``site`` is ``title``, or None."""
        key = f"{site}:{title}"
        cached = self.cache.get(CacheType.WIKIDATA_SEARCH, key)
        if cached is not None:
            return cached or None
        payload = self._get({"action": "wbgetentities", "sites": site, "titles": title, "props": "info"})
        found = ""
        for entity_id, entity in (payload.get("entities") or {}).items():
            if is_qid(entity_id) and "missing" not in entity:
                found = entity_id
                break
        self.cache.set(CacheType.WIKIDATA_SEARCH, key, found)
        return found or None

    # Writes

    def invalidate_entity(self, qid):
        self.cache.invalidate(CacheType.WIKIDATA_ENTITY, self._entity_key(qid))
        self.cache.invalidate(CacheType.WIKIDATA_ENTITY_EXISTS, qid)
        logger.debug("Invalidated Wikidata cache for %s", qid)

    def create_claim(self, entity_id, property_id, value, summary=config.CLAIM_EDIT_SUMMARY):
        """Submit one wbcreateclaim call; ``value`` is an already formatted datavalue payload."""
        site = self._require_site()
        with wiki_errors(f"Adding {property_id} to {entity_id}"):
            token = site.get_token("csrf")
            result = site.post(
                "wbcreateclaim",
                entity=entity_id,
                property=property_id,
                snaktype="value",
                value=json.dumps(value),
                token=token,
                summary=summary,
            )
        if not isinstance(result, dict) or not result.get("success"):
            raise RemoteApiError(f"Adding {property_id} to {entity_id} was not acknowledged")
        logger.info("Added %s to %s", property_id, entity_id)
        return safe_get(result, "claim", "id")

    def create_entity(self, data, summary=config.ENTITY_EDIT_SUMMARY):
        """Create a new item from a wbeditentity payload and return its Q-id."""
        site = self._require_site()
        with wiki_errors("Creating Wikidata item"):
            token = site.get_token("csrf")
            result = site.post(
                "wbeditentity",
                new="item",
                data=json.dumps(data),
                token=token,
                summary=summary,
            )
        new_id = safe_get(result, "entity", "id")
        if not is_qid(new_id):
            raise RemoteApiError("Wikidata did not return an id for the new item")
        self.cache.set(CacheType.WIKIDATA_ENTITY_EXISTS, new_id, True)
        # Searches cached before the item existed would hide it from label lookups
        for label in (data.get("labels") or {}).values():
            if isinstance(label, dict) and label.get("value"):
                self.cache.invalidate(CacheType.WIKIDATA_SEARCH, f"{label.get('language', self.lang)}:{label['value']}")
        logger.info("Created Wikidata item %s", new_id)
        return new_id
