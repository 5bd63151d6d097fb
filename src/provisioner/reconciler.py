"""Provisioning reconciliation loop.

This module drives a single run to completion:
1. Preflight: credentials, network topology, placement, boot image
2. Loop until one managed instance is active:

    CHECK_SINGLETON -> SELECT_PLACEMENT -> ATTEMPT -> SUCCESS | RETRY | FATAL
           ^                                              |
           +---------------- RETRY (wait) ----------------+

Retries are unbounded. Each retry advances to the next availability domain
and waits according to the current retry profile.

Shutdown is cooperative: shutdown() sets an event that wakes any pending
wait and stops the loop before its next step. A provider call already in
flight is allowed to return first.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from .auth import AuthCheckError, verify_access
from .classifier import LaunchAttempter, LaunchOutcome, LaunchResult
from .config import EXIT_FAILURE, EXIT_INTERRUPTED, EXIT_SUCCESS
from .events import Event
from .gateway import GatewayError, OciGateway
from .images import ImageResolutionError, resolve_image_id
from .models import ProvisionSpec
from .network import NetworkResolver, NetworkSetupError, NetworkTopology
from .placement import PlacementError, PlacementSequence, resolve_placement
from .scheduler import Clock, ProfileLabel, RetryScheduler, Sleeper, local_now
from .singleton import InstanceMonitor, InstanceReport, fallback_display_name, next_display_name

logger = logging.getLogger(__name__)


class RunInterrupted(Exception):
    """Raised from a wait when shutdown has been requested."""

    pass


class LoopPhase(str, Enum):
    CHECK_SINGLETON = "check_singleton"
    SELECT_PLACEMENT = "select_placement"
    ATTEMPT = "attempt"
    SUCCESS = "success"
    RETRY = "retry"
    FATAL = "fatal"


TERMINAL_PHASES = frozenset({LoopPhase.SUCCESS, LoopPhase.FATAL})


class RunOutcome(str, Enum):
    """How a run ended."""

    SUCCEEDED = "succeeded"
    ALREADY_ACTIVE = "already_active"
    FATAL = "fatal"
    INTERRUPTED = "interrupted"


_EXIT_CODES = {
    RunOutcome.SUCCEEDED: EXIT_SUCCESS,
    RunOutcome.ALREADY_ACTIVE: EXIT_SUCCESS,
    RunOutcome.FATAL: EXIT_FAILURE,
    RunOutcome.INTERRUPTED: EXIT_INTERRUPTED,
}


@dataclass
class LoopState:
    """Mutable state owned by one run of the loop."""

    ad_index: int = 0
    attempts: int = 0
    last_retry_label: ProfileLabel | None = None


@dataclass(frozen=True)
class LoopContext:
    """Inputs resolved once during preflight."""

    topology: NetworkTopology
    placement: PlacementSequence
    image_id: str
    attempter: LaunchAttempter


@dataclass
class ReconcileResult:
    """Result of a provisioning run."""

    outcome: RunOutcome
    attempts: int = 0
    instance_id: str | None = None
    report: InstanceReport | None = None
    error: str | None = None
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self.outcome]

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()


class ProvisionReconciler:
    """Runs preflight and the retry loop for one configuration.

    The sleeper, clock and random source are injectable so that the loop
    can be driven deterministically.
    """

    def __init__(
        self,
        spec: ProvisionSpec,
        gateway: OciGateway,
        ssh_public_key: str,
        *,
        sleeper: Sleeper | None = None,
        clock: Clock = local_now,
        rng: random.Random | None = None,
    ) -> None:
        self._spec = spec
        self._gateway = gateway
        self._ssh_public_key = ssh_public_key
        self._clock = clock
        self._sleep = sleeper or self._interruptible_sleep
        self._shutdown_event = asyncio.Event()

        self._monitor = InstanceMonitor(
            gateway,
            compartment_id=spec.oci.compartment_ocid,
            shape=spec.instance.shape,
            tag_key=spec.management.managed_by_tag_key,
            tag_value=spec.management.managed_by_tag_value,
        )
        self._scheduler = RetryScheduler(spec.retry, self._sleep, rng=rng, clock=clock)

    @property
    def monitor(self) -> InstanceMonitor:
        return self._monitor

    @property
    def scheduler(self) -> RetryScheduler:
        return self._scheduler

    def shutdown(self) -> None:
        """Request a graceful stop."""
        self._shutdown_event.set()

    async def _interruptible_sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=seconds)
        except TimeoutError:
            return
        raise RunInterrupted()

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    async def run(self) -> ReconcileResult:
        """Run preflight and the loop; never raises for expected failures."""
        spec = self._spec
        logger.info(
            f"Starting A1 provisioning in {spec.oci.region}",
            extra={
                "event": Event.START,
                "region": spec.oci.region,
                "shape": spec.instance.shape,
                "ocpus": spec.instance.ocpus,
                "memory_gb": spec.instance.memory_gb,
            },
        )

        state = LoopState()
        try:
            context = await self.prepare()
            result = await self.run_loop(context, state)
        except RunInterrupted:
            result = ReconcileResult(outcome=RunOutcome.INTERRUPTED, attempts=state.attempts)
        except (AuthCheckError, NetworkSetupError, PlacementError, ImageResolutionError) as e:
            result = ReconcileResult(
                outcome=RunOutcome.FATAL, attempts=state.attempts, error=str(e)
            )

        result.end_time = datetime.now(UTC)
        self._log_result(result)
        return result

    async def prepare(self) -> LoopContext:
        """Resolve everything the loop needs; all failures here are fatal."""
        spec = self._spec
        compartment_id = spec.oci.compartment_ocid

        await verify_access(self._gateway, spec.oci)
        self._check_shutdown()

        resolver = NetworkResolver(
            self._gateway,
            compartment_id,
            spec.management.freeform_tags,
            sleeper=self._sleep,
        )
        topology = await resolver.ensure_topology(spec.network)
        self._check_shutdown()

        placement = await resolve_placement(
            spec.placement.availability_domains, self._gateway, compartment_id
        )
        logger.info(
            f"Availability domains: {', '.join(placement.domains)}",
            extra={"event": Event.PLACEMENT, "availability_domains": list(placement.domains)},
        )
        self._check_shutdown()

        image_id = await resolve_image_id(self._gateway, spec)
        logger.info(
            f"Using image {image_id}",
            extra={"event": Event.IMAGE, "image_id": image_id, "mode": spec.instance.image.mode.value},
        )

        retry = spec.retry
        peak = retry.peak_hours
        logger.info(
            f"Retry every {retry.interval_seconds}s + 0..{retry.jitter_seconds}s jitter"
            + (
                f"; peak {peak.start_hour}-{peak.end_hour}h every "
                f"{peak.interval_seconds}s + 0..{peak.jitter_seconds}s"
                if peak.enabled
                else ""
            ),
            extra={
                "event": Event.RETRY_CONFIG,
                "interval_seconds": retry.interval_seconds,
                "jitter_seconds": retry.jitter_seconds,
                "peak_enabled": peak.enabled,
            },
        )

        attempter = LaunchAttempter(
            self._gateway,
            spec,
            subnet_id=topology.subnet_id,
            image_id=image_id,
            ssh_public_key=self._ssh_public_key,
        )
        return LoopContext(
            topology=topology, placement=placement, image_id=image_id, attempter=attempter
        )

    async def run_loop(self, context: LoopContext, state: LoopState | None = None) -> ReconcileResult:
        """Drive the state machine until success, fatal error or shutdown.

        Raises:
            RunInterrupted: If shutdown is requested between steps or during a wait.
        """
        state = state or LoopState()
        enforce = self._spec.management.enforce_single_active_instance
        phase = LoopPhase.CHECK_SINGLETON
        availability_domain = ""
        display_name = ""
        launch: LaunchResult | None = None

        while True:
            if phase not in TERMINAL_PHASES:
                self._check_shutdown()

            if phase == LoopPhase.CHECK_SINGLETON:
                if enforce:
                    active = await self._count_active()
                    if active >= 1:
                        logger.info(
                            f"Found {active} active managed instance(s); nothing to do",
                            extra={"event": Event.ALREADY_ACTIVE, "active_count": active},
                        )
                        return ReconcileResult(
                            outcome=RunOutcome.ALREADY_ACTIVE,
                            attempts=state.attempts,
                            report=await self._report(),
                        )
                phase = LoopPhase.SELECT_PLACEMENT

            elif phase == LoopPhase.SELECT_PLACEMENT:
                availability_domain = context.placement.at(state.ad_index)
                display_name = await self._next_name()
                phase = LoopPhase.ATTEMPT

            elif phase == LoopPhase.ATTEMPT:
                state.attempts += 1
                instance = self._spec.instance
                logger.info(
                    f"Attempt={state.attempts} AD={availability_domain} Name={display_name} "
                    f"Shape={instance.shape} OCPU={instance.ocpus} RAM_GB={instance.memory_gb} "
                    f"BootGB={instance.boot_volume_gb}",
                    extra={
                        "event": Event.LAUNCH_ATTEMPT,
                        "attempt": state.attempts,
                        "availability_domain": availability_domain,
                        "display_name": display_name,
                    },
                )
                launch = await context.attempter.attempt(availability_domain, display_name)
                if launch.outcome == LaunchOutcome.SUCCESS:
                    phase = LoopPhase.SUCCESS
                elif launch.outcome == LaunchOutcome.RETRYABLE:
                    phase = LoopPhase.RETRY
                else:
                    phase = LoopPhase.FATAL

            elif phase == LoopPhase.RETRY:
                state.ad_index = (state.ad_index + 1) % len(context.placement)
                profile = self._scheduler.current_profile(self._clock())
                state.last_retry_label = self._scheduler.log_profile_change(
                    profile, state.last_retry_label
                )
                await self._scheduler.wait(profile)
                phase = LoopPhase.CHECK_SINGLETON

            elif phase == LoopPhase.SUCCESS:
                assert launch is not None
                return ReconcileResult(
                    outcome=RunOutcome.SUCCEEDED,
                    attempts=state.attempts,
                    instance_id=launch.instance_id,
                    report=await self._report(launch.instance_id),
                )

            else:
                assert launch is not None
                return ReconcileResult(
                    outcome=RunOutcome.FATAL,
                    attempts=state.attempts,
                    error=launch.error,
                )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _check_shutdown(self) -> None:
        if self._shutdown_event.is_set():
            raise RunInterrupted()

    async def _count_active(self) -> int:
        try:
            return await self._monitor.count_active()
        except GatewayError as e:
            logger.warning(
                "Could not check active instances; continuing retry loop",
                extra={"event": Event.ACTIVE_CHECK_FAILED, "error": str(e)},
            )
            return 0

    async def _next_name(self) -> str:
        prefix = self._spec.instance.display_name_prefix
        try:
            names = await self._monitor.existing_display_names()
        except GatewayError as e:
            logger.warning(
                "Could not compute next display name, using timestamp fallback",
                extra={"event": Event.NAME_GEN_FAILED, "error": str(e)},
            )
            return fallback_display_name(prefix, self._clock())
        return next_display_name(prefix, names)

    async def _report(self, instance_id: str | None = None) -> InstanceReport | None:
        try:
            return await self._monitor.describe_active(instance_id)
        except GatewayError as e:
            logger.warning(
                "Could not fetch instance details for the report",
                extra={"event": Event.REPORT_FAILED, "error": str(e)},
            )
            return None

    def _log_result(self, result: ReconcileResult) -> None:
        base = {"attempts": result.attempts, "duration_seconds": result.duration_seconds}

        if result.outcome in (RunOutcome.SUCCEEDED, RunOutcome.ALREADY_ACTIVE):
            report = result.report
            if report is not None:
                logger.info(
                    f"Managed instance active. display_name={report.display_name} "
                    f"state={report.lifecycle_state} id={report.instance_id} "
                    f"private_ip={report.private_ip} public_ip={report.public_ip}",
                    extra={"event": Event.SUCCESS, "instance_id": report.instance_id, **base},
                )
            else:
                logger.info(
                    f"Managed instance active. id={result.instance_id or 'n/a'}",
                    extra={"event": Event.SUCCESS, "instance_id": result.instance_id, **base},
                )
        elif result.outcome == RunOutcome.INTERRUPTED:
            logger.warning(
                "Interrupted; stopping without further launches",
                extra={"event": Event.INTERRUPTED, **base},
            )
        else:
            logger.error(
                f"Provisioning failed: {result.error}",
                extra={"event": Event.FATAL, **base},
            )
