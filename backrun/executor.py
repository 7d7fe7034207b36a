#!/usr/bin/env python3
"""
Backrun Bundle Executor - multi-relay fan-out

Sends both direction bundles for a victim transaction to the primary relay
and to a fixed prefix of alternate relays at the same time:

- Primary failures are surfaced in the ExecutionReport
- Alternate failures are logged as warnings and never abort the batch
- Every call is awaited to a terminal state, nothing is cancelled early
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import aiohttp
from eth_account import Account

from .bundle import Bundle, BundleBuilder
from .config_loader import ExecutorConfig, RelayEndpoint, RelayTable
from .flashloan import FlashLoanContract
from .gas_oracle import GasPriceOracle
from .network import ChainProvider
from .relay import RelayClient

logger = logging.getLogger(__name__)


class OutcomeStatus(Enum):
    """Terminal state of one relay call"""
    ACCEPTED = "accepted"
    FAILED = "failed"


class RelayRole(Enum):
    PRIMARY = "primary"
    ALTERNATE = "alternate"


class BundleStatus(Enum):
    """Aggregate state of one bundle across every relay it was sent to"""
    PRIMARY_ACCEPTED = "primary_accepted"
    ALTERNATES_ONLY = "alternates_only"
    ALL_FAILED = "all_failed"


class PrimaryRelayError(Exception):
    """Raised by ExecutionReport.raise_for_primary() when a primary call failed."""

    def __init__(self, failures: List["RelayOutcome"]):
        self.failures = failures
        details = "; ".join(f"bundle {o.bundle_index}: {o.error}" for o in failures)
        super().__init__(f"Primary relay rejected {len(failures)} bundle(s): {details}")


@dataclass
class RelayOutcome:
    """Result of sending one bundle to one relay"""
    relay: RelayEndpoint
    role: RelayRole
    bundle_index: int
    bundle: Bundle
    status: OutcomeStatus
    response: Optional[Dict[str, Any]] = None
    error: Optional[BaseException] = None
    latency_ms: float = 0.0

    @property
    def accepted(self) -> bool:
        return self.status is OutcomeStatus.ACCEPTED

    @property
    def rpc_error(self) -> Optional[Any]:
        """JSON-RPC error member of an accepted response. The relay still answered."""
        if self.response:
            return self.response.get("error") or None
        return None


@dataclass
class ExecutionReport:
    """Settlement of every relay call made for one execute()."""
    victim_tx_hash: str
    bundles: Tuple[Bundle, ...]
    outcomes: List[RelayOutcome] = field(default_factory=list)

    def _select(self, role: RelayRole, status: OutcomeStatus) -> List[RelayOutcome]:
        return [o for o in self.outcomes if o.role is role and o.status is status]

    @property
    def primary_failures(self) -> List[RelayOutcome]:
        return self._select(RelayRole.PRIMARY, OutcomeStatus.FAILED)

    @property
    def alternate_failures(self) -> List[RelayOutcome]:
        return self._select(RelayRole.ALTERNATE, OutcomeStatus.FAILED)

    @property
    def accepted(self) -> List[RelayOutcome]:
        return [o for o in self.outcomes if o.accepted]

    def bundle_status(self, bundle_index: int) -> BundleStatus:
        mine = [o for o in self.outcomes if o.bundle_index == bundle_index]
        if any(o.accepted and o.role is RelayRole.PRIMARY for o in mine):
            return BundleStatus.PRIMARY_ACCEPTED
        if any(o.accepted for o in mine):
            return BundleStatus.ALTERNATES_ONLY
        return BundleStatus.ALL_FAILED

    @property
    def bundle_statuses(self) -> List[BundleStatus]:
        return [self.bundle_status(i) for i in range(len(self.bundles))]

    @property
    def all_primary_failed(self) -> bool:
        primary = [o for o in self.outcomes if o.role is RelayRole.PRIMARY]
        return bool(primary) and all(not o.accepted for o in primary)

    def raise_for_primary(self) -> None:
        failures = self.primary_failures
        if failures:
            raise PrimaryRelayError(failures)


OutcomeHook = Callable[[RelayOutcome], None]


class BundleExecutor:
    """
    Multi-relay backrun executor

    Builds both direction bundles and races them to every configured relay.
    Callers must serialize execute() per signing account: both bundles of
    one call share a nonce, concurrent calls would collide on it.
    """

    def __init__(
        self,
        builder: BundleBuilder,
        relay_client: RelayClient,
        relays: RelayTable,
        outcome_hooks: Optional[Iterable[OutcomeHook]] = None,
    ):
        self.builder = builder
        self.relay_client = relay_client
        self.relays = relays
        self._outcome_hooks: List[OutcomeHook] = list(outcome_hooks or [])

        logger.info(
            f"✅ Successfully created BundleExecutor "
            f"(primary: {relays.primary.name}, alternates: {len(relays.alternates)})"
        )

    @classmethod
    def from_config(
        cls,
        config: ExecutorConfig,
        provider: ChainProvider,
        session: Optional[aiohttp.ClientSession] = None,
        outcome_hooks: Optional[Iterable[OutcomeHook]] = None,
    ) -> "BundleExecutor":
        """Wire oracle, builder and relay client from an ExecutorConfig."""
        if not config.private_key:
            raise ValueError("PRIVATE_KEY is not configured")

        private_key = config.private_key
        if not private_key.startswith("0x"):
            private_key = "0x" + private_key
        account = Account.from_key(private_key)

        builder = BundleBuilder(
            provider=provider,
            gas_oracle=GasPriceOracle(provider),
            contract=FlashLoanContract(config.flashloan_contract),
            account=account,
            config=config,
        )
        relay_client = RelayClient.from_key(
            config.auth_key,
            config.relays.primary.url,
            session=session,
            timeout=config.relay_timeout,
        )
        return cls(builder, relay_client, config.relays, outcome_hooks)

    async def __aenter__(self) -> "BundleExecutor":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the relay client's HTTP session if the client owns it."""
        await self.relay_client.close()

    def add_outcome_hook(self, hook: OutcomeHook) -> None:
        self._outcome_hooks.append(hook)

    def _emit(self, outcome: RelayOutcome) -> None:
        for hook in self._outcome_hooks:
            try:
                hook(outcome)
            except Exception:
                logger.exception(f"Outcome hook {hook!r} failed")

    async def execute(self, pair_a: str, pair_b: str, victim_tx_hash: str) -> ExecutionReport:
        """
        Build both bundles for victim_tx_hash and send them to every relay.

        Construction and provider-outage errors propagate before anything
        is sent.
        """
        logger.info(f"🚀 Sending bundles for tx: {victim_tx_hash}")
        bundle_a, bundle_b = await self.build_bundles(pair_a, pair_b, victim_tx_hash)
        return await self.send_bundle_to_multiple_relays(bundle_a, bundle_b)

    async def build_bundles(self, pair_a: str, pair_b: str, victim_tx_hash: str) -> Tuple[Bundle, Bundle]:
        return await self.builder.build_bundles(pair_a, pair_b, victim_tx_hash)

    async def _send(self, bundle: Bundle, relay: RelayEndpoint) -> Tuple[Dict[str, Any], float]:
        start = time.perf_counter()
        response = await self.relay_client.send_bundle(bundle, relay.url)
        return response, (time.perf_counter() - start) * 1000

    async def _send_to_alternate(self, bundle: Bundle, index: int, relay: RelayEndpoint) -> RelayOutcome:
        start = time.perf_counter()
        try:
            response, latency_ms = await self._send(bundle, relay)
        except Exception as e:
            logger.warning(f"⚠️ {relay.name} failed: {e}")
            return RelayOutcome(
                relay=relay,
                role=RelayRole.ALTERNATE,
                bundle_index=index,
                bundle=bundle,
                status=OutcomeStatus.FAILED,
                error=e,
                latency_ms=(time.perf_counter() - start) * 1000,
            )
        return RelayOutcome(
            relay=relay,
            role=RelayRole.ALTERNATE,
            bundle_index=index,
            bundle=bundle,
            status=OutcomeStatus.ACCEPTED,
            response=response,
            latency_ms=latency_ms,
        )

    async def send_bundle_to_multiple_relays(self, bundle_a: Bundle, bundle_b: Bundle) -> ExecutionReport:
        """
        Send both bundles to the primary relay and every alternate relay.

        Primary calls are not wrapped: their exceptions come back from
        gather() and are recorded as FAILED primary outcomes.
        """
        bundles = (bundle_a, bundle_b)
        primary = self.relays.primary

        primary_calls = [self._send(bundle, primary) for bundle in bundles]
        alternate_calls = [
            self._send_to_alternate(bundle, index, relay)
            for relay in self.relays.alternates
            for index, bundle in enumerate(bundles)
        ]

        results = await asyncio.gather(*primary_calls, *alternate_calls, return_exceptions=True)

        report = ExecutionReport(victim_tx_hash=bundle_a.victim_tx_hash, bundles=bundles)
        for index, result in enumerate(results[:len(bundles)]):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error(f"❌ Primary relay {primary.name} rejected bundle {index}: {result}")
                outcome = RelayOutcome(
                    relay=primary,
                    role=RelayRole.PRIMARY,
                    bundle_index=index,
                    bundle=bundles[index],
                    status=OutcomeStatus.FAILED,
                    error=result,
                )
            else:
                response, latency_ms = result
                outcome = RelayOutcome(
                    relay=primary,
                    role=RelayRole.PRIMARY,
                    bundle_index=index,
                    bundle=bundles[index],
                    status=OutcomeStatus.ACCEPTED,
                    response=response,
                    latency_ms=latency_ms,
                )
            report.outcomes.append(outcome)

        for result in results[len(bundles):]:
            if isinstance(result, BaseException):
                raise result
            report.outcomes.append(result)

        for outcome in report.outcomes:
            self._emit(outcome)

        logger.info(
            f"📊 Relay results: {len(report.accepted)}/{len(report.outcomes)} accepted, "
            f"bundle status: {[s.value for s in report.bundle_statuses]}"
        )
        return report
