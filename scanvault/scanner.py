from dataclasses import dataclass, field
from hashlib import sha256
import logging
import os
import re

logger = logging.getLogger("scanvault.scanner")

# SHA-256 of empty content, flagged as known-bad by default.
EMPTY_CONTENT_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
DEFAULT_TRIGGER_PATTERN = b"DEMO_TRIGGER"

REASON_HASH_MATCH = "hash match"
REASON_PATTERN_MATCH = "pattern match"

SHA256_HEX_RE = re.compile(r"^[0-9a-f]{64}$")


def compute_digest(content: bytes) -> str:
    return sha256(content).hexdigest()


@dataclass(frozen=True)
class Blocklist:
    hashes: frozenset[str] = field(default_factory=lambda: frozenset({EMPTY_CONTENT_SHA256}))
    trigger: bytes = DEFAULT_TRIGGER_PATTERN

    def __post_init__(self):
        if not self.trigger:
            raise ValueError("Trigger pattern must not be empty")
        invalid = [value for value in self.hashes if not SHA256_HEX_RE.match(value)]
        if invalid:
            raise ValueError(f"Blocklist contains invalid SHA-256 digests: {sorted(invalid)}")

    @classmethod
    def from_env(cls) -> "Blocklist":
        """
        Build the process-wide blocklist.

        BLOCKLIST_SHA256 : comma separated hex digests (default: empty-content hash)
        BLOCKLIST_FILE   : optional file with one digest per line, '#' starts a comment
        TRIGGER_PATTERN  : literal byte pattern (default: DEMO_TRIGGER)
        """
        raw = os.getenv("BLOCKLIST_SHA256")
        entries = [EMPTY_CONTENT_SHA256] if raw is None else raw.split(",")

        path = os.getenv("BLOCKLIST_FILE", "").strip()
        if path:
            with open(path, "r", encoding="utf-8") as fh:
                for line in fh:
                    entries.append(line.split("#", 1)[0])

        hashes = set()
        for entry in entries:
            value = entry.strip().lower()
            if not value:
                continue
            if not SHA256_HEX_RE.match(value):
                logger.warning("Ignoring invalid blocklist entry: %r", value)
                continue
            hashes.add(value)

        trigger = os.getenv("TRIGGER_PATTERN", DEFAULT_TRIGGER_PATTERN.decode("ascii"))
        return cls(hashes=frozenset(hashes), trigger=trigger.encode("utf-8"))


@dataclass(frozen=True)
class Detection:
    status: str
    reason: str | None = None

    @property
    def is_malicious(self) -> bool:
        return self.status == "malicious"


CLEAN = Detection(status="clean")


class ThreatDetector:
    def __init__(self, blocklist: Blocklist):
        self.blocklist = blocklist

    def classify(self, digest: str, content: bytes) -> Detection:
        # Hash lookup runs first; a file matching both checks reports "hash match".
        if digest in self.blocklist.hashes:
            return Detection(status="malicious", reason=REASON_HASH_MATCH)
        if self.blocklist.trigger in content:
            return Detection(status="malicious", reason=REASON_PATTERN_MATCH)
        return CLEAN
