"""
Anti-bot challenge solver for TikTok Live Recorder.

Some TikTok pages answer with a small proof-of-work page instead of the real
content. The page carries an identifier name and a base64 JSON payload with a
prefix and an expected SHA-256 digest. The solution is the decimal nonce whose
hash (prefix + nonce) matches the digest, sent back as a cookie.
"""

import asyncio
import base64
import binascii
import hashlib
import json
import re
from dataclasses import dataclass
from typing import Dict, Optional

from .errors import ChallengeUnsolvable
from .logger import get_logger


MAX_ATTEMPTS = 1_000_000

_WCI_RE = re.compile(r'<p\s+[^>]*id=["\']wci["\'][^>]*class=["\']([^"\']+)["\']')
_CS_RE = re.compile(r'<p\s+[^>]*id=["\']cs["\'][^>]*class=["\']([^"\']+)["\']')


@dataclass
class ChallengeEnvelope:
    """One anti-bot challenge, as extracted from the page."""
    name: str              # Cookie name (the "wci" marker)
    payload: dict          # Decoded JSON payload
    prefix: bytes
    expected: str          # Expected digest, hex
    nonce: Optional[int] = None

    def cookie_value(self) -> str:
        """Encode the solved payload as the cookie value."""
        if self.nonce is None:
            raise ChallengeUnsolvable("Challenge has not been solved")
        solved = dict(self.payload)
        solved['d'] = base64.b64encode(str(self.nonce).encode()).decode()
        return base64.b64encode(json.dumps(solved, separators=(',', ':')).encode()).decode()


def _fix_padding(value: str) -> str:
    return value + '=' * (-len(value) % 4)


def has_challenge(html: str) -> bool:
    """Check whether the markup contains the anti-bot markers."""
    return bool(html) and _WCI_RE.search(html) is not None and _CS_RE.search(html) is not None


def parse_challenge(html: str) -> ChallengeEnvelope:
    """
    Extract the challenge from page markup.

    Raises:
        ChallengeUnsolvable: If the markers are missing or the payload is malformed.
    """
    wci = _WCI_RE.search(html or '')
    if not wci:
        raise ChallengeUnsolvable("wci not found in HTML")
    cs = _CS_RE.search(html)
    if not cs:
        raise ChallengeUnsolvable("cs not found in HTML")

    try:
        payload = json.loads(base64.b64decode(_fix_padding(cs.group(1))))
        prefix = base64.b64decode(_fix_padding(payload['v']['a']))
        expected = base64.b64decode(_fix_padding(payload['v']['c'])).hex()
    except (binascii.Error, ValueError, KeyError, TypeError) as e:
        raise ChallengeUnsolvable(f"Malformed challenge payload: {e}") from e

    return ChallengeEnvelope(
        name=wci.group(1),
        payload=payload,
        prefix=prefix,
        expected=expected
    )


def find_nonce(prefix: bytes, expected_hex: str, limit: int = MAX_ATTEMPTS) -> Optional[int]:
    """
    Brute-force the nonce for a prefix/digest pair.

    Args:
        prefix: Raw prefix bytes.
        expected_hex: Expected SHA-256 digest as lowercase hex.
        limit: Number of candidates to try, starting at 0.

    Returns:
        The nonce, or None if no candidate below the limit matches.
    """
    expected_hex = expected_hex.lower()
    base = hashlib.sha256(prefix)
    for nonce in range(limit):
        h = base.copy()
        h.update(str(nonce).encode())
        if h.hexdigest() == expected_hex:
            return nonce
    return None


def solve_challenge(html: str, limit: int = MAX_ATTEMPTS) -> Dict[str, str]:
    """
    Solve the anti-bot challenge embedded in a page.

    Args:
        html: Page markup.
        limit: Search ceiling.

    Returns:
        Single-entry cookie dict {name: value}.

    Raises:
        ChallengeUnsolvable: If no nonce below the ceiling matches.
    """
    envelope = parse_challenge(html)
    envelope.nonce = find_nonce(envelope.prefix, envelope.expected, limit)
    if envelope.nonce is None:
        raise ChallengeUnsolvable()

    get_logger('challenge').debug(f"Anti-bot challenge solved (nonce={envelope.nonce})")
    return {envelope.name: envelope.cookie_value()}


async def solve_challenge_async(html: str, limit: int = MAX_ATTEMPTS) -> Dict[str, str]:
    """Solve the challenge on a worker thread so the event loop keeps running."""
    return await asyncio.to_thread(solve_challenge, html, limit)
