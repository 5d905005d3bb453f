"""Commons category resolution for performers and bands.

The resolver decides which category name a Wikidata entity should be filed
under: an existing P373 value, the free bare name, or a disambiguated name
when the bare name already belongs to someone else. Existence and
entity-link checks go through the injected clients (which consult the lookup
cache first). When a live check fails the resolver assumes the category
exists and belongs to someone else, so a failure never leads to creating a
duplicate category.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from . import config
from .caching import CacheType
from .errors import PublishError
from .utils import (
    category_title,
    claim_entity_ids,
    claim_values,
    normalize_category_name,
    pick_label,
)

logger = logging.getLogger(__name__)


class CategorySource(str, Enum):
    P373 = "p373"
    DISAMBIGUATED = "disambiguated"
    BASE = "base"


class UnlinkedCategoryPolicy(str, Enum):
    """What to do when the bare-name category exists but links to no entity."""

    REUSE = "reuse"
    DISAMBIGUATE = "disambiguate"
    CONFIRM = "confirm"


@dataclass(frozen=True)
class PerformerCategoryInfo:
    performer_name: str
    performer_qid: str
    commons_category: str
    source: CategorySource
    needs_creation: bool
    description: str
    verified: bool = True


@dataclass(frozen=True)
class BandCategoryCheck:
    needs_disambiguation: bool
    suggested_name: str
    reason: Optional[str] = None


def extract_commons_category(entity):
    """Return the first string P373 (Commons category) value of an entity, or None."""
    for value in claim_values(entity, config.P_COMMONS_CATEGORY):
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def get_occupation_for_disambiguation(entity):
    """Return the occupation qualifier for a disambiguated name, or None without occupation claims.

    The first occupation found in the lookup table wins; an unknown occupation
    falls back to the generic label.
    """
    occupations = claim_entity_ids(entity, config.P_OCCUPATION)
    if not occupations and not claim_values(entity, config.P_OCCUPATION):
        return None
    for qid in occupations:
        if qid in config.OCCUPATION_LABELS:
            return config.OCCUPATION_LABELS[qid]
    return config.DEFAULT_OCCUPATION_LABEL


def get_nationality_for_disambiguation(entity):
    countries = claim_entity_ids(entity, config.P_COUNTRY_OF_CITIZENSHIP)
    if not countries:
        return None
    return config.NATIONALITY_ADJECTIVES.get(countries[0])


def disambiguated_category_name(performer_name, entity):
    occupation = get_occupation_for_disambiguation(entity)
    if occupation:
        return f"{performer_name} ({occupation})"
    nationality = get_nationality_for_disambiguation(entity)
    if nationality:
        return f"{performer_name} ({nationality} {config.DEFAULT_OCCUPATION_LABEL})"
    return f"{performer_name} ({config.DEFAULT_OCCUPATION_LABEL})"


def find_infobox_qid(wikitext):
    """Return the Q-id passed to a {{Wikidata Infobox}} on a category page, or None."""
    if not wikitext:
        return None
    for match in config.WIKIDATA_INFOBOX_PATTERN.finditer(wikitext):
        args = match.group("args") or ""
        found = config.INFOBOX_QID_PATTERN.search(args)
        if found:
            return found.group(1).upper()
    return None


def performer_description(qid, name):
    return f"[[d:{qid}|{name}]]."


def is_performer(entity):
    """Return True if the entity is an instance of human (Q5)."""
    return config.Q_HUMAN in claim_entity_ids(entity, config.P_INSTANCE_OF)


class CategoryResolver:
    def __init__(
        self,
        commons,
        wikidata=None,
        cache=None,
        policy=config.UNLINKED_CATEGORY_POLICY,
        confirm: Optional[Callable[[str, str], bool]] = None,
    ):
        self.commons = commons
        self.wikidata = wikidata
        self.cache = cache if cache is not None else getattr(commons, "cache", None)
        self.policy = UnlinkedCategoryPolicy(policy)
        self.confirm = confirm

    # Live checks with conservative fallbacks

    def check_exists(self, name):
        """Return (exists, verified). A failed check reports the category as existing."""
        try:
            return self.commons.category_exists(name), True
        except PublishError as exc:
            logger.warning("Existence check for %s failed (%s); assuming it exists", category_title(name), exc)
            return True, False

    def linked_entity(self, name):
        """Return the Q-id a category is linked to, or None when it carries no link.

        An explicit infobox Q-id wins; otherwise the Wikidata sitelink for the
        category page is used. Raises PublishError when the lookups fail.
        """
        qid = find_infobox_qid(self.commons.get_category_wikitext(name))
        if qid:
            return qid
        if self.wikidata is not None:
            return self.wikidata.find_entity_by_sitelink(category_title(name))
        return None

    def _created_here_for(self, name, qid):
        """Return True if this tool created the category for ``qid`` (or for no particular entity)."""
        if self.cache is None:
            return False
        record = self.cache.get(CacheType.COMMONS_CATEGORY_CREATED, normalize_category_name(name))
        if record is None:
            return False
        owner = record.get("entity_id") if isinstance(record, dict) else None
        return owner in (None, "", qid)

    def _accept_unlinked(self, name, qid):
        if self._created_here_for(name, qid):
            logger.info("Category:%s was created by this tool; reusing it for %s", name, qid)
            return True
        if self.policy is UnlinkedCategoryPolicy.REUSE:
            return True
        if self.policy is UnlinkedCategoryPolicy.CONFIRM and self.confirm is not None:
            return bool(self.confirm(name, qid))
        return False

    # Resolution

    def resolve_performer(self, entity):
        """Return the PerformerCategoryInfo for a Wikidata performer entity."""
        qid = entity.get("id")
        name = pick_label(entity) or qid
        description = performer_description(qid, name)

        existing = extract_commons_category(entity)
        if existing:
            exists, verified = self.check_exists(existing)
            return PerformerCategoryInfo(
                performer_name=name,
                performer_qid=qid,
                commons_category=existing,
                source=CategorySource.P373,
                needs_creation=not exists,
                description=description,
                verified=verified,
            )

        base_exists, verified = self.check_exists(name)
        if not base_exists:
            return PerformerCategoryInfo(name, qid, name, CategorySource.BASE, True, description)

        try:
            linked = self.linked_entity(name)
            link_checked = True
        except PublishError as exc:
            logger.warning("Could not read the entity link of Category:%s (%s); disambiguating", name, exc)
            linked = None
            link_checked = False
            verified = False

        if link_checked:
            if linked == qid:
                return PerformerCategoryInfo(name, qid, name, CategorySource.BASE, False, description, verified)
            if linked is None and self._accept_unlinked(name, qid):
                return PerformerCategoryInfo(name, qid, name, CategorySource.BASE, False, description, verified)

        disambiguated = disambiguated_category_name(name, entity)
        disambiguated_exists, disambiguation_verified = self.check_exists(disambiguated)
        return PerformerCategoryInfo(
            performer_name=name,
            performer_qid=qid,
            commons_category=disambiguated,
            source=CategorySource.DISAMBIGUATED,
            needs_creation=not disambiguated_exists,
            description=description,
            verified=verified and disambiguation_verified,
        )

    def resolve_performers(self, entities):
        return [self.resolve_performer(entity) for entity in entities]

    def check_band_disambiguation(self, name, qid):
        """Return the category name to use for a band, preferring its P373."""
        fallback = f"{name} ({config.BAND_DISAMBIGUATION_SUFFIX})"
        if self.wikidata is not None and qid:
            try:
                entity = self.wikidata.get_entity(qid)
            except PublishError as exc:
                logger.warning("Could not fetch %s for its P373 (%s)", qid, exc)
                entity = None
            existing = extract_commons_category(entity) if entity else None
            if existing:
                return BandCategoryCheck(
                    needs_disambiguation=existing != name,
                    suggested_name=existing,
                    reason=f"Using P373 value from Wikidata: {existing}",
                )
        try:
            if not self.commons.category_exists(name):
                return BandCategoryCheck(False, name)
            linked = self.linked_entity(name)
        except PublishError as exc:
            logger.warning("Could not verify Category:%s (%s); using disambiguation", name, exc)
            return BandCategoryCheck(True, fallback, "Could not verify existing category")
        if linked == qid:
            return BandCategoryCheck(False, name, f"Category:{name} already links to {qid}")
        if linked is None and self._accept_unlinked(name, qid):
            return BandCategoryCheck(False, name, f"Category:{name} exists without an entity link")
        return BandCategoryCheck(
            True,
            fallback,
            f"Category:{name} exists but links to a different entity ({linked or 'none'})",
        )
