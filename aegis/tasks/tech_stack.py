"""Technology fingerprinting from HTTP response headers."""

import logging
import re
from typing import TYPE_CHECKING

import httpx

from aegis.services.evidence_store import EvidenceStore
from aegis.tasks.base import ScanTask, TaskContext

if TYPE_CHECKING:
    from aegis.core.config import Settings

logger = logging.getLogger(__name__)

FINGERPRINT_HEADERS = ("server", "x-powered-by", "x-generator", "x-aspnet-version")

# Header product name (lowercase) -> (ecosystem, package) for advisory lookups.
KNOWN_PACKAGES: dict[str, tuple[str, str]] = {
    "express": ("npm", "express"),
    "next.js": ("npm", "next"),
    "nuxt": ("npm", "nuxt"),
    "django": ("pypi", "django"),
    "flask": ("pypi", "flask"),
    "werkzeug": ("pypi", "werkzeug"),
    "gunicorn": ("pypi", "gunicorn"),
    "uvicorn": ("pypi", "uvicorn"),
    "rails": ("gem", "rails"),
    "laravel": ("composer", "laravel/framework"),
    "wordpress": ("composer", "wordpress/wordpress"),
}

# "nginx/1.18.0", "Apache/2.4.62 (Debian)", "PHP/8.1.2-1ubuntu2.14"
_PRODUCT_TOKEN = re.compile(r"([A-Za-z][\w.\-]*)/(v?\d[\w.\-~]*)")


def parse_products(header_value: str) -> list[tuple[str, str | None]]:
    """Extract (product, version) pairs; a bare product name yields version None."""
    found = [(m.group(1), m.group(2)) for m in _PRODUCT_TOKEN.finditer(header_value)]
    if found:
        return found
    bare = header_value.split("(", 1)[0].strip()
    return [(bare, None)] if bare else []


class TechStackTask(ScanTask):
    name = "tech_stack"

    def __init__(
        self,
        evidence: EvidenceStore,
        settings: "Settings",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(evidence, settings)
        self._client = client

    async def _fetch_headers(self, url: str) -> httpx.Headers:
        if self._client is not None:
            resp = await self._client.get(url, follow_redirects=True, timeout=self.settings.HTTP_TIMEOUT_SEC)
            return resp.headers
        async with httpx.AsyncClient(timeout=self.settings.HTTP_TIMEOUT_SEC, follow_redirects=True) as client:
            resp = await client.get(url)
            return resp.headers

    async def run(self, context: TaskContext) -> int:
        url = f"https://{context.domain}"
        try:
            headers = await self._fetch_headers(url)
        except httpx.HTTPError as e:
            logger.info("Site unreachable for fingerprinting", extra={"scan_id": context.scan_id, "error": str(e)})
            return 0

        seen: set[tuple[str, str | None]] = set()
        count = 0
        for header in FINGERPRINT_HEADERS:
            value = headers.get(header)
            if not value:
                continue
            for product, version in parse_products(value):
                key = (product.lower(), version)
                if key in seen:
                    continue
                seen.add(key)
                ecosystem, package = KNOWN_PACKAGES.get(product.lower(), (None, product))
                self.record_component(context, package, version, src_url=url, ecosystem=ecosystem)
                count += 1
        logger.info("Tech stack fingerprint completed", extra={"scan_id": context.scan_id, "component_count": count})
        return count
