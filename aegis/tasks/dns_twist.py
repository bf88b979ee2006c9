"""Typosquat detection: generate look-alike domains and report the ones that resolve."""

import asyncio
import logging
import socket

from aegis.tasks.base import FindingDraft, ScanTask, TaskContext

logger = logging.getLogger(__name__)

MAX_PERMUTATIONS = 60
RESOLVE_CONCURRENCY = 10
ALT_TLDS = ("com", "net", "org", "co", "io")

# Visually confusable substitutions.
HOMOGLYPHS: dict[str, tuple[str, ...]] = {
    "o": ("0",),
    "l": ("1", "i"),
    "i": ("1", "l"),
    "e": ("3",),
    "a": ("4",),
    "s": ("5",),
    "m": ("rn",),
}


def permutations(domain: str) -> list[str]:
    """Deterministic, deduplicated list of typo variants, excluding the domain itself."""
    label, _, tld = domain.partition(".")
    if not label or not tld:
        return []
    variants: list[str] = []
    for i in range(len(label)):
        variants.append(label[:i] + label[i + 1:])  # omission
        variants.append(label[:i] + label[i] + label[i:])  # repetition
        if i + 1 < len(label):
            variants.append(label[:i] + label[i + 1] + label[i] + label[i + 2:])  # transposition
        for glyph in HOMOGLYPHS.get(label[i], ()):
            variants.append(label[:i] + glyph + label[i + 1:])
    candidates = [f"{v}.{tld}" for v in variants if v]
    candidates += [f"{label}.{alt}" for alt in ALT_TLDS if alt != tld]
    unique = [c for c in dict.fromkeys(candidates) if c != domain]
    return unique[:MAX_PERMUTATIONS]


class DnsTwistTask(ScanTask):
    name = "dns_twist"

    async def _resolve(self, candidate: str, limit: asyncio.Semaphore) -> list[str]:
        loop = asyncio.get_running_loop()
        async with limit:
            try:
                infos = await loop.getaddrinfo(candidate, None, proto=socket.IPPROTO_TCP)
            except (socket.gaierror, UnicodeError):
                return []
        return sorted({info[4][0] for info in infos})

    async def run(self, context: TaskContext) -> int:
        candidates = permutations(context.domain)
        limit = asyncio.Semaphore(RESOLVE_CONCURRENCY)
        resolved = await asyncio.gather(*(self._resolve(c, limit) for c in candidates))

        count = 0
        for candidate, addresses in zip(candidates, resolved):
            if not addresses:
                continue
            self.record(
                context,
                "typo-domain",
                "MEDIUM",
                candidate,
                meta={"original_domain": context.domain, "addresses": addresses},
                finding=FindingDraft(
                    finding_type="PHISHING_SETUP",
                    recommendation=(
                        f"Review {candidate}; if it is not owned by {context.organization_name}, "
                        "monitor it and consider a takedown request."
                    ),
                    description=f"Look-alike domain {candidate} resolves to {', '.join(addresses)}",
                ),
            )
            count += 1
        logger.info(
            "Typosquat check completed",
            extra={"scan_id": context.scan_id, "candidates": len(candidates), "registered": count},
        )
        return count
