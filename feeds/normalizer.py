"""Feed normalization: RSS/Atom payloads to canonical JobRecords."""
import logging
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional, Tuple, Union
from bs4 import BeautifulSoup, Tag

from shared.exceptions import ParseError
from shared.models import JobRecord
from shared.utils import ensure_utc, get_utc_now, stable_hash

logger = logging.getLogger(__name__)

FALLBACK_ID_LENGTH = 32

# Ordered candidate keys per field; the first non-empty value wins.
RSS_FIELDS: Dict[str, Tuple[str, ...]] = {
    "external_id": ("guid", "link"),
    "title": ("title",),
    "description": ("description", "content:encoded"),
    "company": ("company", "job_listing:company", "dc:creator"),
    "location": ("location", "jobLocation", "job_listing:location"),
    "job_type": ("jobType", "type", "job_listing:job_type"),
    "category": ("category",),
    "salary": ("salary", "job_listing:salary"),
    "apply_url": ("link", "url"),
    "published_date": ("pubDate", "publishedDate", "dc:date"),
}

ATOM_FIELDS: Dict[str, Tuple[str, ...]] = {
    "external_id": ("id",),
    "title": ("title",),
    "description": ("content", "summary"),
    "company": ("author.name", "author"),
    "location": ("location",),
    "job_type": (),
    "category": (),
    "salary": (),
    "apply_url": ("link",),
    "published_date": ("published", "updated"),
}


def qualified_name(element: Tag) -> str:
    """Element name including its namespace prefix, e.g. dc:creator."""
    if element.prefix:
        return f"{element.prefix}:{element.name}"
    return element.name


def element_to_dict(element: Tag) -> Dict[str, List[Any]]:
    """
    Convert a feed element into plain data.

    Every child name maps to a list of values. A value is the element text,
    a {"value", "attributes"} dict when the element carries attributes, or a
    nested dict of the same shape when the element has children.
    """
    data: Dict[str, List[Any]] = {}
    for child in element.find_all(True, recursive=False):
        data.setdefault(qualified_name(child), []).append(_element_value(child))
    return data


def _element_value(element: Tag) -> Any:
    if element.find(True) is not None:
        value = element_to_dict(element)
    else:
        value = element.get_text(strip=True)

    if element.attrs:
        wrapped = {"value": value, "attributes": dict(element.attrs)}
        if isinstance(value, dict):
            # Markup content such as Atom type="xhtml" keeps its flattened text
            wrapped["text"] = element.get_text(" ", strip=True)
        return wrapped
    return value


def _first(value: Any) -> Any:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def unwrap(value: Any) -> Optional[str]:
    """Reduce a singleton list or {"value", "attributes"} structure to scalar text."""
    value = _first(value)
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict) and "attributes" in value:
        text = value.get("value")
        if not isinstance(text, str):
            text = value.get("text")
        if isinstance(text, str) and text.strip():
            return text.strip()
        href = value["attributes"].get("href")
        return href.strip() if isinstance(href, str) and href.strip() else None
    return None


def extract_value(data: Dict[str, Any], key: str) -> Optional[str]:
    """Look up a (possibly dotted) key in element data and unwrap it."""
    current: Any = data
    for part in key.split("."):
        current = _first(current)
        if isinstance(current, dict) and "attributes" in current and isinstance(current.get("value"), dict):
            current = current["value"]
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return unwrap(current)


def extract_first(data: Dict[str, Any], keys: Tuple[str, ...]) -> Optional[str]:
    for key in keys:
        value = extract_value(data, key)
        if value:
            return value
    return None


def parse_date(value: Optional[str], source_url: str = "") -> datetime:
    """Parse an RFC 822 or ISO 8601 date. Absent or unparsable values become now."""
    if not value:
        return get_utc_now()

    try:
        return ensure_utc(parsedate_to_datetime(value))
    except (TypeError, ValueError):
        pass

    try:
        return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        logger.warning(f"Unparsable date {value!r} in {source_url}, using fetch time")
        return get_utc_now()


def fallback_external_id(title: str, apply_url: str) -> str:
    """Deterministic identity for items whose feed assigns none."""
    return stable_hash(title, apply_url, length=FALLBACK_ID_LENGTH)


class FeedNormalizer:
    """Parses RSS 2.0 and Atom payloads into JobRecords."""

    def normalize(self, payload: Union[str, bytes], source_url: str) -> List[JobRecord]:
        """
        Parse a payload into job records tagged with source_url.

        Malformed or unsupported documents are logged and yield no records.
        """
        try:
            records = self.parse(payload, source_url)
        except ParseError as e:
            logger.error(f"Error extracting jobs from {source_url}: {e}")
            return []

        logger.info(f"Fetched {len(records)} jobs from {source_url}")
        return records

    def parse(self, payload: Union[str, bytes], source_url: str) -> List[JobRecord]:
        """Parse a payload, raising ParseError when the dialect is not recognised."""
        if not payload or not payload.strip():
            raise ParseError("Empty feed payload")

        try:
            soup = BeautifulSoup(payload, "xml")
        except Exception as e:
            raise ParseError(f"Unparsable feed payload: {e}") from e

        elements, fields = self._detect_dialect(soup)
        return [self._build_record(element, fields, source_url) for element in elements]

    def _detect_dialect(self, soup: BeautifulSoup) -> Tuple[List[Tag], Dict[str, Tuple[str, ...]]]:
        rss = soup.find("rss")
        if rss is not None:
            channel = rss.find("channel")
            if channel is None:
                raise ParseError("RSS document has no channel")
            return channel.find_all("item", recursive=False), RSS_FIELDS

        feed = soup.find("feed")
        if feed is not None:
            return feed.find_all("entry", recursive=False), ATOM_FIELDS

        raise ParseError("Unsupported feed format")

    def _build_record(
        self,
        element: Tag,
        fields: Dict[str, Tuple[str, ...]],
        source_url: str
    ) -> JobRecord:
        data = element_to_dict(element)
        values = {
            name: extract_first(data, keys) or ""
            for name, keys in fields.items()
            if name != "published_date"
        }

        if not values["external_id"]:
            values["external_id"] = fallback_external_id(values["title"], values["apply_url"])

        return JobRecord(
            source_url=source_url,
            published_date=parse_date(extract_first(data, fields["published_date"]), source_url),
            raw_payload=data,
            **values
        )
