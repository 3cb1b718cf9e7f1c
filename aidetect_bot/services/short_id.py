"""Short shareable identifiers for detection records."""

import logging
import secrets
from collections import Counter
from typing import Awaitable, Callable, Collection, Optional

logger = logging.getLogger(__name__)

SHORT_ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
SHORT_ID_LENGTH = 4
MAX_ALLOCATION_ATTEMPTS = 10

BLOCKED_TOKENS = (
    "fuck", "shit", "damn", "hell", "ass", "sex", "porn", "xxx",
    "nazi", "hate", "kill", "die", "dead", "bomb", "gun", "drug",
    "admin", "root", "test", "null", "void", "temp", "spam",
)


def generate_candidate(length: int = SHORT_ID_LENGTH) -> str:
    """Draw a random id from the alphabet using the OS CSPRNG."""
    return "".join(secrets.choice(SHORT_ID_ALPHABET) for _ in range(length))


def is_rejected(candidate: str) -> bool:
    """Return True if the candidate contains a blocked token or too many repeats."""
    lowered = candidate.lower()
    if any(token in lowered for token in BLOCKED_TOKENS):
        return True

    # No single character may fill more than half of the id
    most_common = Counter(lowered).most_common(1)
    return bool(most_common) and most_common[0][1] > len(lowered) // 2


class ShortIdAllocator:
    """Allocate short ids that are unused in storage.

    Args:
        exists: Coroutine returning True if an id is already stored.
        generator: Candidate factory, replaceable in tests.
        max_attempts: Candidates to try before giving up.
    """

    def __init__(
        self,
        exists: Callable[[str], Awaitable[bool]],
        generator: Callable[[], str] = generate_candidate,
        max_attempts: int = MAX_ALLOCATION_ATTEMPTS,
    ):
        self._exists = exists
        self._generator = generator
        self.max_attempts = max_attempts

    async def allocate(self, reserved: Collection[str] = ()) -> Optional[str]:
        """Return a fresh short id, or None once the attempt budget is spent.

        ``reserved`` holds ids handed out but not yet stored; they count as taken.
        """
        for attempt in range(1, self.max_attempts + 1):
            candidate = self._generator().lower()

            if is_rejected(candidate):
                logger.debug("Attempt %d: rejected filtered id %s", attempt, candidate)
                continue

            try:
                taken = candidate in reserved or await self._exists(candidate)
            except Exception as e:
                # Treat an unknown answer as a collision and try another candidate
                logger.error("Short id uniqueness check failed: %s", e)
                taken = True

            if not taken:
                logger.debug("Allocated short id %s on attempt %d", candidate, attempt)
                return candidate

            logger.info("Attempt %d: short id collision on %s", attempt, candidate)

        logger.error("Failed to allocate a short id after %d attempts", self.max_attempts)
        return None
