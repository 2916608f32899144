"""Mutual fund scheme name to AMFI scheme code lookup."""

import logging
import re

from ..config import Config
from ..errors import ProviderError
from .client import RETRYABLE, QuoteClient

logger = logging.getLogger(__name__)

SCHEME_DIRECTORY_URL = "https://api.mfapi.in/mf"

# "Axis Bluechip Fund - Direct Growth (120465)"
TRAILING_CODE_RE = re.compile(r"\((\d+)\)\s*$")


def normalize_scheme_name(text: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace."""
    text = re.sub(r"[^a-z0-9\s]", "", text.lower())
    return re.sub(r"\s+", " ", text).strip()


def extract_scheme_code(name: str) -> tuple[str | None, str]:
    """Split a trailing "(123456)" scheme code off a fund name.

    Returns:
        Tuple of (code or None, name without the code)
    """
    name = name.strip()
    match = TRAILING_CODE_RE.search(name)
    if not match:
        return None, name
    return match.group(1), name[: match.start()].strip()


def match_scheme_code(name: str, schemes: list[dict]) -> str | None:
    """Find the best scheme code for a fund name in a directory listing.

    An exact normalized-name match wins outright. Otherwise every scheme is
    scored by the fraction of significant words (longer than two characters)
    of the name that appear in it; a candidate needs at least
    min(3, words - 1) of them, and at least one.

    Args:
        name: Fund name as it appears in a statement
        schemes: Directory entries, each with schemeCode and schemeName

    Returns:
        Scheme code as a string, or None if nothing matched well enough
    """
    target = normalize_scheme_name(name)
    if not target:
        return None

    normalized = [(s, normalize_scheme_name(str(s.get("schemeName", "")))) for s in schemes]

    for scheme, scheme_name in normalized:
        if scheme_name == target:
            logger.debug("Exact scheme match for %r: %s", name, scheme.get("schemeCode"))
            return str(scheme["schemeCode"])

    words = [w for w in target.split(" ") if len(w) > 2]
    if not words:
        return None
    required = max(1, min(3, len(words) - 1))

    best: tuple[float, dict] | None = None
    for scheme, scheme_name in normalized:
        matched = sum(1 for w in words if w in scheme_name)
        if matched < required:
            continue
        score = matched / len(words)
        # Ties keep directory order
        if best is None or score > best[0]:
            best = (score, scheme)

    if best is None:
        return None
    score, scheme = best
    logger.info(
        "Matched %r to %s %r (%d%% of words)",
        name,
        scheme.get("schemeCode"),
        scheme.get("schemeName"),
        round(score * 100),
    )
    return str(scheme["schemeCode"])


class SchemeDirectory:
    """The AMFI scheme list, downloaded at most once per instance."""

    def __init__(self, client: QuoteClient, config: Config) -> None:
        self.client = client
        self.config = config
        self._schemes: list[dict] | None = None
        self._resolved: dict[str, str | None] = {}

    async def load(self) -> list[dict]:
        """Download the scheme list. A failed download leaves it empty."""
        if self._schemes is not None:
            return self._schemes

        try:
            data = await self.client.get_json(
                SCHEME_DIRECTORY_URL, self.config.directory_timeout_seconds
            )
            if not isinstance(data, list) or not data:
                raise ProviderError("mfapi: invalid scheme directory response")
        except RETRYABLE as e:
            logger.warning("Scheme directory unavailable, fund codes left pending: %s", e)
            self._schemes = []
        else:
            logger.info("Loaded %d schemes from directory", len(data))
            self._schemes = [s for s in data if isinstance(s, dict) and "schemeCode" in s]
        return self._schemes

    async def resolve(self, name: str) -> str | None:
        """Scheme code for a fund name; each distinct name is looked up once."""
        if name in self._resolved:
            return self._resolved[name]

        schemes = await self.load()
        code = match_scheme_code(name, schemes) if schemes else None
        if code is None:
            logger.warning("No scheme code found for %r", name)
        self._resolved[name] = code
        return code
