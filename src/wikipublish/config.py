import re
from pathlib import Path

# HTTP identity and base endpoints
HEADERS = {"User-Agent": "WikiPublish/1.0 (Commons and Wikidata publishing tool)"}
COMMONS_HOST = "commons.wikimedia.org"
WIKIDATA_HOST = "www.wikidata.org"
COMMONS_API_ENDPOINT = f"https://{COMMONS_HOST}/w/api.php"
WIKIDATA_API_ENDPOINT = f"https://{WIKIDATA_HOST}/w/api.php"

# Request tuning
API_TIMEOUT = 30  # Seconds per HTTP request
API_MAX_ATTEMPTS = 4  # Attempts per read before giving up
API_RETRY_DELAY = 0.1  # Pause between failed attempts (seconds)

# Lookup cache
LOOKUP_CACHE_TTL_SECONDS = 24 * 60 * 60
LOOKUP_CACHE_STORAGE_KEY = "wikipublish_lookup_cache"
CACHE_DIR = Path("data/cache")
LOOKUP_CACHE_DB = CACHE_DIR / "lookup_cache.sqlite"

# Credentials are read from the environment by the CLI only
USERNAME_ENV = "WIKIPUBLISH_USERNAME"
PASSWORD_ENV = "WIKIPUBLISH_PASSWORD"

# Wikidata properties used by the publisher
P_INSTANCE_OF = "P31"
P_COUNTRY_OF_CITIZENSHIP = "P27"
P_OCCUPATION = "P106"
P_COMMONS_CATEGORY = "P373"
P_IMAGE = "P18"
P_DEPICTS = "P180"
P_PARTICIPANT = "P710"
P_HAS_PART = "P527"
Q_HUMAN = "Q5"

TIME_PROPERTIES = {
    "P569",  # date of birth
    "P570",  # date of death
    "P571",  # inception
    "P576",  # dissolved
    "P580",  # start time
    "P582",  # end time
    "P585",  # point in time
}
GREGORIAN_CALENDAR = "http://www.wikidata.org/entity/Q1985727"
DAY_PRECISION = 11

# Structured data property names that carry captions instead of statements
CAPTION_PROPERTIES = {"labels", "captions"}

# ID validation and wikitext patterns
QID_EXACT_PATTERN = re.compile(r"^Q[1-9]\d*$")
PID_EXACT_PATTERN = re.compile(r"^P[1-9]\d*$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
WIKIDATA_INFOBOX_PATTERN = re.compile(r"\{\{\s*Wikidata[ _]+Infobox\s*(?P<args>\|[^}]*)?\}\}", re.IGNORECASE)
INFOBOX_QID_PATTERN = re.compile(r"\|\s*(?:qid\s*=\s*)?(Q[1-9]\d*)\s*(?=\||$)", re.IGNORECASE)

# Occupation Q-ids mapped to the qualifier used in disambiguated category names
OCCUPATION_LABELS = {
    "Q177220": "singer",
    "Q855091": "guitarist",
    "Q765778": "bassist",
    "Q386854": "drummer",
    "Q2252262": "keyboardist",
    "Q36834": "composer",
    "Q639669": "musician",
    "Q10800557": "singer-songwriter",
    "Q488205": "singer-songwriter",
    "Q2643890": "music producer",
    "Q222722": "conductor",
    "Q1414443": "vocalist",
}
DEFAULT_OCCUPATION_LABEL = "musician"

# Country Q-ids mapped to nationality adjectives
NATIONALITY_ADJECTIVES = {
    "Q20": "Norwegian",
    "Q30": "American",
    "Q145": "British",
    "Q183": "German",
    "Q142": "French",
    "Q38": "Italian",
    "Q29": "Spanish",
    "Q96": "Mexican",
    "Q16": "Canadian",
    "Q408": "Australian",
    "Q31": "Belgian",
    "Q55": "Dutch",
    "Q34": "Swedish",
    "Q35": "Danish",
    "Q33": "Finnish",
    "Q39": "Swiss",
    "Q40": "Austrian",
    "Q155": "Brazilian",
    "Q159": "Russian",
    "Q17": "Japanese",
    "Q148": "Chinese",
    "Q884": "South Korean",
    "Q668": "Indian",
}
BAND_DISAMBIGUATION_SUFFIX = "band"

# Resolver policy for existing categories that carry no Wikidata link
UNLINKED_CATEGORY_POLICY = "confirm"  # one of: reuse, disambiguate, confirm

# Edit summaries
UPLOAD_COMMENT = "Uploaded via WikiPublish"
METADATA_EDIT_SUMMARY = "Updated file description and metadata via WikiPublish"
CATEGORY_EDIT_SUMMARY = "Created category via WikiPublish"
CLAIM_EDIT_SUMMARY = "Added claim via WikiPublish"
ENTITY_EDIT_SUMMARY = "Created entity via WikiPublish"
CAPTIONS_EDIT_SUMMARY = "Updated captions via WikiPublish"
DEPICTS_EDIT_SUMMARY = "Updated depicts via WikiPublish"

DEFAULT_LANGUAGE = "en"
