import logging
import time
from contextlib import contextmanager
from datetime import datetime, timezone

import mwclient.errors
import requests

from . import config
from .errors import RemoteApiError

logger = logging.getLogger(__name__)

CATEGORY_PREFIX = "Category:"
FILE_PREFIX = "File:"


def is_qid(value):
    """Return True if the value looks like a Wikidata item id (Q*)."""
    if not isinstance(value, str):
        return False
    return bool(config.QID_EXACT_PATTERN.fullmatch(value.strip()))


def is_pid(value):
    """Return True if the value looks like a Wikidata property id (P*)."""
    if not isinstance(value, str):
        return False
    return bool(config.PID_EXACT_PATTERN.fullmatch(value.strip()))


def qid_numeric(qid):
    """Return the numeric part of a Q-id (Q42 -> 42)."""
    if not is_qid(qid):
        raise ValueError(f"Not a Wikidata item id: {qid!r}")
    return int(qid.strip()[1:])


def utc_now_iso():
    """Return a UTC timestamp string in ISO 8601 format (second precision)."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def safe_get(payload, *keys, default=None):
    """Traverse nested dicts and lists safely and return default on missing keys."""
    cur = payload
    for key in keys:
        if isinstance(cur, dict) and key in cur:
            cur = cur[key]
        elif isinstance(cur, list) and isinstance(key, int) and -len(cur) <= key < len(cur):
            cur = cur[key]
        else:
            return default
    return cur


def pick_label(entity, lang=config.DEFAULT_LANGUAGE):
    """Return preferred label for an entity, falling back to any language."""
    if not entity:
        return None
    labels = entity.get("labels") or {}
    if lang in labels:
        return labels[lang].get("value")
    if labels:
        first = next(iter(labels.values()))
        return first.get("value")
    return None


def claim_values(entity, property_id):
    """Return mainsnak datavalue values for a property, skipping novalue/somevalue snaks."""
    claims = safe_get(entity, "claims", property_id, default=None) or []
    values = []
    for claim in claims:
        value = safe_get(claim, "mainsnak", "datavalue", "value")
        if value is not None:
            values.append(value)
    return values


def claim_entity_ids(entity, property_id):
    """Return the Q-ids referenced by an item-valued property, in claim order."""
    ids = []
    for value in claim_values(entity, property_id):
        if isinstance(value, dict) and is_qid(value.get("id")):
            ids.append(value["id"])
    return ids


def normalize_category_name(name):
    """Strip the namespace prefix and normalise underscores/whitespace in a category name."""
    if not isinstance(name, str):
        return ""
    out = name.strip()
    if out.lower().startswith(CATEGORY_PREFIX.lower()):
        out = out[len(CATEGORY_PREFIX):]
    out = out.replace("_", " ")
    return " ".join(out.split())


def category_title(name):
    """Return the full page title (Category:Name) for a category name."""
    return f"{CATEGORY_PREFIX}{normalize_category_name(name)}"


def file_title(filename):
    """Return the full page title (File:Name) for a Commons filename."""
    name = filename.strip()
    if name.lower().startswith(FILE_PREFIX.lower()):
        name = name[len(FILE_PREFIX):]
    return f"{FILE_PREFIX}{name}"


def extract_api_error(payload):
    """Return (code, info) for an API-level error object, or None."""
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if not error:
        return None
    if isinstance(error, dict):
        code = error.get("code")
        info = error.get("info") or error.get("message") or code or "Unknown API error"
        return code, info
    return None, str(error)


def first_page(payload):
    """Return the first page object from a formatversion=2 query response."""
    pages = safe_get(payload, "query", "pages", default=None) or []
    if isinstance(pages, dict):
        pages = list(pages.values())
    return pages[0] if pages else None


def get_json(params=None, *, endpoint=config.WIKIDATA_API_ENDPOINT, session=None, with_format=True):
    """Wrapper around requests.get with retries and default MediaWiki params.

    Raises RemoteApiError once retries are exhausted (HTTP errors, transport
    failures, bodies that are not JSON) or when the API answers with an error
    object.
    """
    http = session or requests
    query = dict(params or {})
    if with_format:
        query.setdefault("format", "json")
        query.setdefault("formatversion", 2)
    last_error = None
    for attempt in range(config.API_MAX_ATTEMPTS):
        try:
            response = http.get(
                endpoint,
                headers=config.HEADERS,
                params=query if query else None,
                timeout=config.API_TIMEOUT,
            )
        except requests.RequestException as exc:
            logger.warning("Request to %s failed: %s", endpoint, exc)
            last_error = RemoteApiError(str(exc))
            time.sleep(config.API_RETRY_DELAY)
            continue
        if response.status_code == 200:
            try:
                payload = response.json()
            except ValueError as exc:
                # Maintenance and proxy error pages arrive as HTML with status 200
                logger.warning("Non-JSON response from %s: %s", endpoint, exc)
                last_error = RemoteApiError(f"Invalid JSON from {endpoint}: {exc}", status=200)
                time.sleep(config.API_RETRY_DELAY)
                continue
            api_error = extract_api_error(payload)
            if api_error:
                code, info = api_error
                raise RemoteApiError(info, code=code, status=200)
            return payload
        if response.status_code == 429:
            sleep_for = 2**attempt
            logger.warning("Rate limited by %s. Sleeping %ss...", endpoint, sleep_for)
            time.sleep(sleep_for)
        else:
            logger.warning("HTTP %s for %s", response.status_code, endpoint)
            time.sleep(config.API_RETRY_DELAY)
        last_error = RemoteApiError(f"HTTP {response.status_code} from {endpoint}", status=response.status_code)
    raise last_error or RemoteApiError(f"No response from {endpoint}")


@contextmanager
def wiki_errors(action):
    """Translate mwclient and transport failures raised inside the block into RemoteApiError."""
    try:
        yield
    except mwclient.errors.APIError as exc:
        raise RemoteApiError(exc.info or str(exc), code=exc.code) from exc
    except mwclient.errors.MwClientError as exc:
        raise RemoteApiError(f"{action} failed: {exc}") from exc
    except requests.RequestException as exc:
        raise RemoteApiError(f"{action} failed: {exc}") from exc
