"""Echo suppression: recognize inbound updates that reflect our own last edit"""

import hashlib
from collections.abc import Iterable


def fingerprint(content: str, image_map_keys: Iterable[str]) -> str:
    """Fingerprint of outgoing content plus the sorted image-map keys (values are session-local)."""
    keys = "\x1f".join(sorted(set(image_map_keys)))
    return hashlib.sha256(f"{content}\x00{keys}".encode("utf-8")).hexdigest()


class EchoGuard:
    """Holds the fingerprint of the most recent outbound edit. No queue: newer stamps replace older ones."""

    def __init__(self) -> None:
        self.last_sent: str | None = None

    def stamp(self, content: str, image_map_keys: Iterable[str]) -> str:
        self.last_sent = fingerprint(content, image_map_keys)
        return self.last_sent

    def is_echo(self, content: str, image_map_keys: Iterable[str]) -> bool:
        """Compare an inbound payload with the last stamp; the stamp is cleared either way."""
        matched = self.last_sent is not None and fingerprint(content, image_map_keys) == self.last_sent
        self.last_sent = None
        return matched

    def reset(self) -> None:
        self.last_sent = None
