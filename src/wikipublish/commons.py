import json
import logging

from . import config
from .caching import CacheType
from .claims import build_statement, statement_entity_id
from .errors import PreconditionError, RemoteApiError
from .utils import (
    category_title,
    file_title,
    first_page,
    get_json,
    is_qid,
    normalize_category_name,
    safe_get,
    wiki_errors,
)

logger = logging.getLogger(__name__)


def media_info_id(page_id):
    """Return the MediaInfo entity id (M<pageId>) for a Commons file page."""
    return f"M{int(page_id)}"


def build_category_wikitext(description=None, parents=()):
    """Compose the page text for a new category: description paragraph then parent links."""
    parts = []
    if description:
        parts.append(f"{description.strip()}\n")
    for parent in parents:
        name = normalize_category_name(parent)
        if name:
            parts.append(f"[[{category_title(name)}]]")
    return "\n".join(parts).strip() + "\n"


class CommonsClient:
    """Wikimedia Commons access: anonymous cached reads over requests, writes through mwclient."""

    def __init__(self, cache, site=None, session=None, endpoint=config.COMMONS_API_ENDPOINT):
        self.cache = cache
        self.site = site
        self.session = session
        self.endpoint = endpoint

    def _get(self, params):
        return get_json(params, endpoint=self.endpoint, session=self.session)

    def _require_site(self):
        if self.site is None:
            raise PreconditionError("No authenticated Commons site configured for write operations.")
        return self.site

    # Reads

    def category_exists(self, name):
        """Return True if Category:<name> exists. Raises RemoteApiError when the check fails."""
        name = normalize_category_name(name)
        cached = self.cache.get(CacheType.COMMONS_CATEGORY_EXISTS, name)
        if cached is not None:
            return cached
        payload = self._get(
            {
                "action": "query",
                "titles": category_title(name),
                "prop": "categoryinfo",
            }
        )
        page = first_page(payload)
        if page is None:
            raise RemoteApiError(f"Commons returned no page for {category_title(name)}")
        exists = not page.get("missing") and not page.get("invalid")
        self.cache.set(CacheType.COMMONS_CATEGORY_EXISTS, name, exists)
        return exists

    def get_category_wikitext(self, name):
        """Return the current wikitext of Category:<name> ('' when the page is missing)."""
        name = normalize_category_name(name)
        cached = self.cache.get(CacheType.COMMONS_CATEGORY, name)
        if cached is not None:
            return cached
        payload = self._get(
            {
                "action": "query",
                "titles": category_title(name),
                "prop": "revisions",
                "rvprop": "content",
                "rvslots": "main",
            }
        )
        page = first_page(payload) or {}
        content = safe_get(page, "revisions", 0, "slots", "main", "content", default="") or ""
        self.cache.set(CacheType.COMMONS_CATEGORY, name, content)
        return content

    def get_existing_depicts(self, page_id):
        """Return the existing P180 statements on a file's MediaInfo entity."""
        mid = media_info_id(page_id)
        payload = self._get({"action": "wbgetentities", "ids": mid, "props": "claims"})
        entity = safe_get(payload, "entities", mid, default={}) or {}
        statements = entity.get("statements") or entity.get("claims") or {}
        if not isinstance(statements, dict):
            return []
        return list(statements.get(config.P_DEPICTS) or [])

    # Writes

    def create_category(self, name, wikitext, summary=config.CATEGORY_EDIT_SUMMARY):
        """Create Category:<name> unless it already exists.

        Returns ``{"success": bool, "exists": bool, "pageid": int | None}``;
        ``exists`` is True when the page was already there.
        """
        site = self._require_site()
        title = category_title(name)
        with wiki_errors(f"Creating {title}"):
            page = site.pages[title]
            if page.exists:
                logger.info("%s already exists; nothing to create", title)
                return {"success": False, "exists": True, "pageid": getattr(page, "pageid", None)}
            result = page.edit(wikitext, summary=summary, createonly=True)
        if isinstance(result, dict) and str(result.get("result", "")).lower() not in ("", "success"):
            raise RemoteApiError(f"Creating {title} returned {result.get('result')}")
        logger.info("Created %s", title)
        page_id = result.get("pageid") if isinstance(result, dict) else None
        return {"success": True, "exists": False, "pageid": page_id}

    def upload(self, source, filename, text, comment=config.UPLOAD_COMMENT):
        """Upload a file and return its Commons page id.

        ``source`` is a path or a binary file object.
        """
        site = self._require_site()
        with wiki_errors(f"Uploading {filename}"):
            if hasattr(source, "read"):
                result = site.upload(file=source, filename=filename, description=text, comment=comment)
            else:
                with open(source, "rb") as fh:
                    result = site.upload(file=fh, filename=filename, description=text, comment=comment)
        result = result or {}
        status = str(result.get("result", "")).lower()
        if status == "warning":
            warnings = result.get("warnings") or {}
            raise RemoteApiError(f"Upload of {filename} rejected with warnings: {', '.join(sorted(warnings))}")
        if status and status != "success":
            raise RemoteApiError(f"Upload of {filename} returned {result.get('result')}")
        stored_name = result.get("filename") or filename
        page_id = result.get("pageid") or safe_get(result, "imageinfo", "pageid")
        if not page_id:
            with wiki_errors(f"Looking up {stored_name}"):
                page_id = getattr(site.pages[file_title(stored_name)], "pageid", None)
        if not page_id:
            raise RemoteApiError(f"Upload of {filename} succeeded but no page id was returned")
        logger.info("Uploaded %s (page id %s)", stored_name, page_id)
        return int(page_id)

    def edit_page(self, filename, wikitext, summary=config.METADATA_EDIT_SUMMARY):
        """Replace the description page text of an existing file."""
        site = self._require_site()
        title = file_title(filename)
        with wiki_errors(f"Editing {title}"):
            page = site.pages[title]
            if not page.exists:
                raise RemoteApiError(f"{title} does not exist", code="missingtitle")
            result = page.edit(wikitext, summary=summary, nocreate=True)
        logger.info("Updated %s", title)
        return result

    def set_captions(self, page_id, captions, summary=config.CAPTIONS_EDIT_SUMMARY):
        """Write captions ({language: text} or [{language, text}]) as MediaInfo labels."""
        if isinstance(captions, dict):
            items = [{"language": lang, "text": text} for lang, text in captions.items()]
        else:
            items = list(captions or [])
        labels = {}
        for item in items:
            language = item.get("language")
            text = item.get("text") if "text" in item else item.get("value")
            if language and text:
                labels[language] = {"language": language, "value": text}
        if not labels:
            logger.info("No captions to write for page %s", page_id)
            return None
        return self._edit_media_info(page_id, {"labels": labels}, f"{summary} ({len(labels)} languages)")

    def set_depicts(self, page_id, depicts, summary=config.DEPICTS_EDIT_SUMMARY):
        """Make the file's P180 statements match ``depicts`` ([{qid, label}]).

        Returns False when the existing statements already match.
        """
        wanted = []
        for item in depicts or []:
            qid = item.get("qid") if isinstance(item, dict) else item
            if is_qid(qid) and qid not in wanted:
                wanted.append(qid)
        existing = self.get_existing_depicts(page_id)
        existing_ids = {}
        for statement in existing:
            qid = statement_entity_id(statement)
            if qid:
                existing_ids[qid] = statement
        if set(existing_ids) == set(wanted):
            logger.info("Depicts already up to date for page %s", page_id)
            return False
        claims = [build_statement(config.P_DEPICTS, qid) for qid in wanted if qid not in existing_ids]
        for qid, statement in existing_ids.items():
            if qid not in wanted and statement.get("id"):
                claims.append({"id": statement["id"], "remove": ""})
        self._edit_media_info(page_id, {"claims": claims}, summary)
        return True

    def _edit_media_info(self, page_id, data, summary):
        site = self._require_site()
        mid = media_info_id(page_id)
        with wiki_errors(f"Editing {mid}"):
            token = site.get_token("csrf")
            result = site.post(
                "wbeditentity",
                id=mid,
                data=json.dumps(data),
                token=token,
                summary=summary,
            )
        if not isinstance(result, dict) or not result.get("success"):
            raise RemoteApiError(f"Structured data edit on {mid} was not acknowledged")
        logger.info("Updated structured data on %s", mid)
        return result
