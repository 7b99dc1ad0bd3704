"""
Sanitization barrier.

Runs before anything is persisted. Each record is rebuilt field by field in
memory with every detector match replaced by its mask; only fully rebuilt
records leave the barrier. A record that cannot be masked with confidence is
quarantined whole, with its values hashed so nothing toxic is written.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple
import json
import logging

from strata.config import StrataConfig
from strata.errors import SanitizationFailure
from strata.quarantine import QuarantineReason, QuarantineRecord, Stage
from .detectors import DetectorRegistry, default_registry, one_way_hash

logger = logging.getLogger(__name__)

_BINARY_TYPES = (bytes, bytearray, memoryview)


@dataclass(frozen=True)
class SanitizationResult:
    records: Tuple[Dict[str, Any], ...]
    quarantined: Tuple[QuarantineRecord, ...]
    masked_fields: int = 0


class SanitizationBarrier:
    """Masks toxic fields in a batch of raw records."""

    def __init__(self, config: StrataConfig, registry: Optional[DetectorRegistry] = None):
        self.config = config
        self.registry = registry if registry is not None else default_registry()

    def sanitize(self, batch: Iterable[Mapping[str, Any]]) -> SanitizationResult:
        """
        Sanitize a batch.

        Returns:
            SanitizationResult: masked records, plus quarantine records for
            any record that could not be masked
        """
        clean = []
        quarantined = []
        masked_total = 0

        for record in batch:
            try:
                sanitized, masked = self.sanitize_record(record)
            except SanitizationFailure as e:
                logger.warning(
                    f"Quarantining record: field '{e.field}' could not be masked "
                    f"(detector={e.detector})"
                )
                quarantined.append(QuarantineRecord(
                    stage=Stage.BRONZE,
                    reason=QuarantineReason.SANITIZATION_FAILED.value,
                    payload=self._hashed_payload(record),
                    detail=str(e),
                ))
                continue
            clean.append(sanitized)
            masked_total += masked

        logger.info(
            f"Sanitized {len(clean)} record(s), masked {masked_total} field(s), "
            f"quarantined {len(quarantined)}"
        )
        return SanitizationResult(tuple(clean), tuple(quarantined), masked_total)

    def sanitize_record(self, record: Mapping[str, Any]) -> Tuple[Dict[str, Any], int]:
        """
        Build a masked copy of one record.

        Returns:
            (masked copy, number of masked fields)

        Raises:
            SanitizationFailure: If any field cannot be masked with confidence
        """
        if not isinstance(record, Mapping):
            raise SanitizationFailure(
                f"Expected a mapping, got {type(record).__name__}", field="<record>"
            )

        result: Dict[str, Any] = {}
        masked = 0
        for name, value in record.items():
            result[name], count = self._sanitize_value(str(name), str(name), value)
            masked += count
        return result, masked

    def _sanitize_value(self, path: str, name: str, value: Any) -> Tuple[Any, int]:
        if isinstance(value, _BINARY_TYPES):
            raise SanitizationFailure(f"Binary value at '{path}' cannot be inspected", field=path)

        try:
            detector = self.registry.match(name, value)
        except Exception as e:
            raise SanitizationFailure(f"Detector failed on '{path}': {e}", field=path) from e

        if detector is not None:
            try:
                return detector.mask(value, self.config), 1
            except Exception as e:
                raise SanitizationFailure(
                    f"Detector '{detector.name}' could not mask '{path}': {e}",
                    field=path,
                    detector=detector.name,
                ) from e

        if isinstance(value, Mapping):
            nested: Dict[str, Any] = {}
            masked = 0
            for key, item in value.items():
                nested[key], count = self._sanitize_value(f"{path}.{key}", str(key), item)
                masked += count
            return nested, masked

        if isinstance(value, (list, tuple, set, frozenset)):
            items = []
            masked = 0
            for i, item in enumerate(value):
                clean, count = self._sanitize_value(f"{path}[{i}]", name, item)
                items.append(clean)
                masked += count
            return items, masked

        return value, 0

    def _hashed_payload(self, record: Any) -> Dict[str, Any]:
        """Quarantine payload with every value one-way hashed."""
        if not isinstance(record, Mapping):
            return {"<record>": one_way_hash(repr(record), self.config)}
        payload = {}
        for name, value in record.items():
            if value is None:
                payload[str(name)] = None
                continue
            if isinstance(value, _BINARY_TYPES):
                text = bytes(value).hex()
            else:
                text = _payload_text(value)
            payload[str(name)] = one_way_hash(text, self.config)
        return payload


def _payload_text(value: Any) -> str:
    try:
        return json.dumps(value, default=str, sort_keys=True)
    except (TypeError, ValueError):
        # Unsortable keys (e.g. {1: .., "k": ..}) or a circular structure
        return repr(value)


__all__ = ["SanitizationBarrier", "SanitizationResult"]
