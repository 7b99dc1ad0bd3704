"""
Toxic-data detectors and masking policies.

A detector pairs a matcher (does this field hold toxic data?) with a masking
policy (what to replace it with). Policies are dispatched through a table
keyed by MaskingPolicy, so adding a detector never adds a branch.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import hashlib
import hmac
import re

from strata.config import StrataConfig


class MaskingPolicy(Enum):
    """How a matched value is transformed before persistence."""
    TRUNCATE_AND_MASK = "truncate_and_mask"
    REDACT_TO_TOKEN = "redact_to_token"
    ONE_WAY_HASH = "one_way_hash"


Matcher = Callable[[str, Any], bool]
Masker = Callable[[Any, StrataConfig], Any]


def field_name_matcher(pattern: str) -> Matcher:
    """Match fields whose name matches `pattern` (case-insensitive search)."""
    compiled = re.compile(pattern, re.IGNORECASE)

    def match(field_name: str, value: Any) -> bool:
        return bool(compiled.search(field_name))
    return match


def value_matcher(pattern: str) -> Matcher:
    """Match string (or integer) values that fully match `pattern`."""
    compiled = re.compile(pattern)

    def match(field_name: str, value: Any) -> bool:
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            return False
        return compiled.fullmatch(str(value).strip()) is not None
    return match


def truncate_and_mask(value: Any, config: StrataConfig) -> str:
    """Keep only the last four digits: '4111 1111 1111 1111' -> 'XXXX-XXXX-XXXX-1111'."""
    digits = re.sub(r"\D", "", str(value))
    if len(digits) < 4:
        raise ValueError("value has fewer than four digits to retain")
    return f"XXXX-XXXX-XXXX-{digits[-4:]}"


def redact_to_token(value: Any, config: StrataConfig) -> str:
    return config.redaction_token


def one_way_hash(value: Any, config: StrataConfig) -> str:
    """Salted SHA-256 so equal inputs stay joinable without being recoverable."""
    normalized = str(value).strip().lower().encode("utf-8")
    return hmac.new(config.hash_salt.encode("utf-8"), normalized, hashlib.sha256).hexdigest()


MASKERS: Dict[MaskingPolicy, Masker] = {
    MaskingPolicy.TRUNCATE_AND_MASK: truncate_and_mask,
    MaskingPolicy.REDACT_TO_TOKEN: redact_to_token,
    MaskingPolicy.ONE_WAY_HASH: one_way_hash,
}


@dataclass(frozen=True)
class Detector:
    """A registered (matcher, policy) pair."""

    name: str
    matcher: Matcher
    policy: MaskingPolicy
    description: Optional[str] = None

    def mask(self, value: Any, config: StrataConfig) -> Any:
        return MASKERS[self.policy](value, config)


class DetectorRegistry:
    """Ordered registry of detectors; the first match wins for a field."""

    def __init__(self, detectors: Optional[List[Detector]] = None):
        self._detectors: List[Detector] = []
        for detector in detectors or []:
            self.register(detector)

    def register(self, detector: Detector) -> None:
        """
        Register a detector.

        Raises:
            ValueError: If a detector with the same name is already registered
        """
        if any(d.name == detector.name for d in self._detectors):
            raise ValueError(f"Detector '{detector.name}' is already registered")
        self._detectors.append(detector)

    def unregister(self, name: str) -> None:
        self._detectors = [d for d in self._detectors if d.name != name]

    def get_all(self) -> List[Detector]:
        return list(self._detectors)

    def match(self, field_name: str, value: Any) -> Optional[Detector]:
        """Return the first detector claiming this field, or None."""
        for detector in self._detectors:
            if detector.matcher(field_name, value):
                return detector
        return None

    def __len__(self):
        return len(self._detectors)


CREDIT_CARD_PATTERN = r"\d(?:[ -]?\d){12,15}"
SSN_PATTERN = r"\d{3}-\d{2}-\d{4}"
EMAIL_PATTERN = r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"
SECRET_FIELD_PATTERN = r"(password|passwd|secret|token|api[_-]?key|credential)"


def default_registry() -> DetectorRegistry:
    """Built-in detectors for card numbers, secrets, SSNs and e-mail addresses."""
    return DetectorRegistry([
        Detector(
            name="secret_field",
            matcher=field_name_matcher(SECRET_FIELD_PATTERN),
            policy=MaskingPolicy.REDACT_TO_TOKEN,
            description="Credentials identified by field name",
        ),
        Detector(
            name="credit_card",
            matcher=value_matcher(CREDIT_CARD_PATTERN),
            policy=MaskingPolicy.TRUNCATE_AND_MASK,
            description="13-16 digit card numbers, optionally space or dash separated",
        ),
        Detector(
            name="ssn",
            matcher=value_matcher(SSN_PATTERN),
            policy=MaskingPolicy.REDACT_TO_TOKEN,
            description="US social security numbers",
        ),
        Detector(
            name="email",
            matcher=value_matcher(EMAIL_PATTERN),
            policy=MaskingPolicy.ONE_WAY_HASH,
            description="E-mail addresses",
        ),
    ])


__all__ = [
    "MaskingPolicy",
    "Detector",
    "DetectorRegistry",
    "MASKERS",
    "field_name_matcher",
    "value_matcher",
    "truncate_and_mask",
    "redact_to_token",
    "one_way_hash",
    "default_registry",
]
