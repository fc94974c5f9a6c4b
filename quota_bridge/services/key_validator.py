"""
Key Validator - Partitions a submitted key list.

Every entry ends up in exactly one bucket of the ValidationReport:
duplicate_in_batch, invalid_format, already_used, dead or live. Ledger and
probe are only consulted for keys that survive the cheaper checks before
them. The probe batch is joined before returning.
"""

import time

from structlog import get_logger

from quota_bridge.config import settings
from quota_bridge.models.domain import ValidationReport
from quota_bridge.observability.metrics import metrics
from quota_bridge.observability.tracing import trace_operation
from quota_bridge.services.key_ledger import KeyLedger, hash_key
from quota_bridge.services.key_probe import KeyProbe
from quota_bridge.services.worker_pool import BoundedWorkerPool

logger = get_logger(__name__)


class KeyFormatRules:
    """Prefix and length bounds for a trimmed key."""

    def __init__(
        self,
        required_prefix: str | None = None,
        min_length: int | None = None,
        max_length: int | None = None,
    ) -> None:
        self.required_prefix = (
            settings.key_required_prefix if required_prefix is None else required_prefix
        )
        self.min_length = settings.key_min_length if min_length is None else min_length
        self.max_length = settings.key_max_length if max_length is None else max_length

    def accepts(self, key: str) -> bool:
        if not key:
            return False
        if self.required_prefix and not key.startswith(self.required_prefix):
            return False
        if any(ch.isspace() for ch in key):
            return False
        return self.min_length <= len(key) <= self.max_length


class KeyValidator:
    """Dedupe, format check, ledger check, then bounded liveness probing."""

    def __init__(
        self,
        ledger: KeyLedger,
        probe: KeyProbe,
        concurrency: int | None = None,
        rules: KeyFormatRules | None = None,
    ) -> None:
        self.ledger = ledger
        self.probe = probe
        self.pool = BoundedWorkerPool(concurrency or settings.probe_concurrency)
        self.rules = rules or KeyFormatRules()

    async def validate(self, submitted: list[str]) -> ValidationReport:
        """Classify every submitted entry. Order within each bucket follows input order."""
        report = ValidationReport(submitted_count=len(submitted))
        started = time.perf_counter()

        seen: set[str] = set()
        candidates: list[str] = []
        for raw in submitted:
            key = raw.strip()
            if not key:
                report.invalid_format.append(raw)
                continue
            if key in seen:
                report.duplicate_in_batch.append(key)
                continue
            seen.add(key)
            if not self.rules.accepts(key):
                report.invalid_format.append(key)
                continue
            candidates.append(key)

        if candidates:
            used_hashes = await self.ledger.existing(hash_key(k) for k in candidates)
            to_probe: list[str] = []
            for key in candidates:
                if hash_key(key) in used_hashes:
                    report.already_used.append(key)
                else:
                    to_probe.append(key)

            if to_probe:
                with trace_operation(
                    "key_probe_batch", keys=len(to_probe), concurrency=self.pool.concurrency
                ):
                    verdicts = await self.pool.run(to_probe, self.probe.is_live)
                for key, live in zip(to_probe, verdicts, strict=True):
                    (report.live if live else report.dead).append(key)

        duration = time.perf_counter() - started
        metrics.key_validation_duration_seconds.observe(duration)
        logger.info(
            "keys_validated",
            submitted=report.submitted_count,
            live=len(report.live),
            dead=len(report.dead),
            already_used=len(report.already_used),
            invalid_format=len(report.invalid_format),
            duplicates=len(report.duplicate_in_batch),
            duration_ms=int(duration * 1000),
        )
        return report
