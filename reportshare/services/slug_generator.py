"""Human-readable, collision-free slugs for shareable reports.

Synopsis:
Derives ``<domain>-<path segments>-<id suffix>`` from a report URL, cleans it
to ``[a-z0-9-]``, then probes persistence until an unused variant is found.

Glossary:
- Infra subdomain: ``api``, ``cdn``, ``static``, ``app``, ``admin``, ``blog``,
  ``shop``; kept as a prefix instead of being collapsed away.
- Ignorable segment: Path parts that carry no meaning (numbers, ``v2``,
  ``page``, ``index``, ``default``, ``home``).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable
from urllib.parse import urlsplit

from ..errors import SlugExhausted

logger = logging.getLogger(__name__)

MAX_SLUG_LENGTH = 100
MAX_SUFFIX_ATTEMPTS = 100
INFRA_SUBDOMAINS = frozenset({"api", "cdn", "static", "app", "admin", "blog", "shop"})

_IGNORABLE_SEGMENTS = (
    re.compile(r"^\d+$"),
    re.compile(r"^v\d+$"),
    re.compile(r"^page$"),
    re.compile(r"^index$"),
    re.compile(r"^default$"),
    re.compile(r"^home$"),
)
_INVALID_CHARS = re.compile(r"[^a-z0-9-]")
_HYPHEN_RUNS = re.compile(r"-+")
_SLUG_FORMAT = re.compile(r"^[a-z0-9-]+$")

SlugExistsCheck = Callable[[str, "str | None"], bool]


@dataclass(frozen=True)
class SlugOptions:
    max_length: int = MAX_SLUG_LENGTH
    path_segments: int = 2
    suffix_length: int = 6


def validate_slug_format(slug: str | None) -> bool:
    """Non-empty, at most 100 chars, ``[a-z0-9-]`` only, no edge or doubled hyphens."""
    if not slug:
        return False
    if len(slug) > MAX_SLUG_LENGTH:
        return False
    if not _SLUG_FORMAT.match(slug):
        return False
    if slug.startswith("-") or slug.endswith("-"):
        return False
    if "--" in slug:
        return False
    return True


def clean_slug(value: str, max_length: int = MAX_SLUG_LENGTH) -> str:
    slug = _INVALID_CHARS.sub("-", value.lower())
    slug = _HYPHEN_RUNS.sub("-", slug).strip("-")
    # Truncation can expose a hyphen at the cut point.
    return slug[:max_length].rstrip("-")


def extract_domain(hostname: str) -> str:
    domain = hostname[4:] if hostname.startswith("www.") else hostname
    parts = domain.split(".")
    if len(parts) > 2:
        main = ".".join(parts[-2:])
        subdomain = parts[0]
        if subdomain in INFRA_SUBDOMAINS:
            return f"{subdomain}-{main}"
        return main
    return domain


def is_ignorable_segment(segment: str) -> bool:
    lowered = segment.lower()
    return any(pattern.match(lowered) for pattern in _IGNORABLE_SEGMENTS)


def extract_path_segments(path: str, max_segments: int) -> list[str]:
    segments = [s for s in path.split("/") if s and not is_ignorable_segment(s)]
    return segments[:max(0, max_segments)]


def build_base_slug(domain: str, segments: list[str]) -> str:
    domain_slug = domain.replace(".", "-")
    if not segments:
        return domain_slug
    return f"{domain_slug}-{'-'.join(segments)}"


class SlugGenerator:
    """Generates slugs and probes ``slug_exists`` for collisions."""

    def __init__(self, slug_exists: SlugExistsCheck, options: SlugOptions | None = None):
        self._slug_exists = slug_exists
        self.options = options or SlugOptions()

    def generate(self, url: str, record_id: str, options: SlugOptions | None = None) -> str:
        opts = options or self.options
        suffix = self._id_suffix(record_id, opts.suffix_length)
        base = self._derive(url, suffix, opts)
        if base is None:
            logger.info("Falling back to generic slug for report %s (unparseable URL)", record_id)
            base = clean_slug(f"report-{suffix}", opts.max_length) or "report"
        return self.ensure_unique(base, record_id, opts.max_length)

    def _derive(self, url: str, suffix: str, opts: SlugOptions) -> str | None:
        try:
            parts = urlsplit((url or "").strip())
            hostname = parts.hostname
        except ValueError:
            return None
        if not parts.scheme or not hostname:
            return None

        domain = extract_domain(hostname)
        segments = extract_path_segments(parts.path, opts.path_segments)
        candidate = build_base_slug(domain, segments)
        if suffix:
            candidate = f"{candidate}-{suffix}"
        cleaned = clean_slug(candidate, opts.max_length)
        return cleaned or None

    @staticmethod
    def _id_suffix(record_id: str, length: int) -> str:
        if length <= 0:
            return ""
        return str(record_id or "")[-length:]

    def ensure_unique(self, base_slug: str, record_id: str | None, max_length: int = MAX_SLUG_LENGTH) -> str:
        if not self._slug_exists(base_slug, record_id):
            return base_slug

        for attempt in range(1, MAX_SUFFIX_ATTEMPTS + 1):
            marker = f"-{attempt}"
            stem = base_slug[: max_length - len(marker)].rstrip("-")
            candidate = f"{stem}{marker}"
            if not self._slug_exists(candidate, record_id):
                logger.debug("Slug %s resolved after %s collisions", candidate, attempt)
                return candidate

        logger.error("Slug space exhausted for base %s (report %s)", base_slug, record_id)
        raise SlugExhausted(
            f"Unable to generate unique slug after {MAX_SUFFIX_ATTEMPTS} attempts"
        )

    def validate_format(self, slug: str | None) -> bool:
        return validate_slug_format(slug)


SLUG_EXAMPLES = {
    "https://www.google.com": "google-com-abc123",
    "https://github.com/user/repo": "github-com-user-repo-def456",
    "https://api.example.com/v1/users": "api-example-com-users-ghi789",
    "https://stackoverflow.com/questions/123456/how-to-code": "stackoverflow-com-questions-how-to-code-jkl012",
    "https://blog.medium.com/article-title": "blog-medium-com-article-title-mno345",
    "https://subdomain.example.com/path": "example-com-path-pqr678",
}
