"""Pass driver: one monitoring and scaling pass across active deployments."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field

from autoscaler.db.models import ACTIVE, APPLIED, FAILED, SKIPPED
from autoscaler.db.service import DeploymentStore
from autoscaler.errors import HostingError, OperationInProgressError
from autoscaler.scaling.policy import ScalingDirection, ScalingPolicy
from autoscaler.scaling.utilization import assess_health
from autoscaler.services.executor import ProvisioningExecutor
from autoscaler.services.monitor import ResourceMonitor
from autoscaler.services.notifier import Notifier

logger = logging.getLogger(__name__)

# DeploymentReport.outcome
OUTCOME_SCALED = "scaled"
OUTCOME_HELD = "held"
OUTCOME_SKIPPED = "skipped"
OUTCOME_ERROR = "error"
OUTCOME_DEFERRED = "deferred"

COOLDOWN_OUTCOMES = (APPLIED, FAILED)


@dataclass
class DeploymentReport:
    """Result of one deployment's pipeline within a pass."""

    deployment_id: str
    usage: dict | None = None
    decision_reason: str = ""
    scaled: bool = False
    outcome: str = OUTCOME_HELD
    direction: str = ScalingDirection.NONE.value


@dataclass
class PassSummary:
    """Aggregated result of a pass; ``to_dict`` is the JSON contract."""

    checked: int = 0
    scaled_up: int = 0
    scaled_down: int = 0
    errors: int = 0
    deferred: int = 0
    details: list[DeploymentReport] = field(default_factory=list)

    def add(self, report: DeploymentReport) -> None:
        self.details.append(report)
        if report.outcome == OUTCOME_DEFERRED:
            self.deferred += 1
            return
        self.checked += 1
        if report.outcome == OUTCOME_ERROR:
            self.errors += 1
        elif report.scaled and report.direction == ScalingDirection.UP.value:
            self.scaled_up += 1
        elif report.scaled and report.direction == ScalingDirection.DOWN.value:
            self.scaled_down += 1

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "scaled_up": self.scaled_up,
            "scaled_down": self.scaled_down,
            "errors": self.errors,
            "deferred": self.deferred,
            "details": [
                {k: v for k, v in asdict(report).items() if k != "direction"}
                for report in self.details
            ],
        }


class PassDriver:
    """Runs Monitor -> Policy -> Executor for every active deployment.

    Deployments are processed by a fixed-size thread pool. Each task checks
    the pass deadline before starting; once the budget is spent the
    remaining deployments are reported as deferred and left for the next
    pass. Pipelines already running are allowed to finish.

    Example:
        driver = PassDriver(store, monitor, policy, executor)
        summary = driver.run()
        print(summary.to_dict())
    """

    def __init__(
        self,
        store: DeploymentStore,
        monitor: ResourceMonitor,
        policy: ScalingPolicy,
        executor: ProvisioningExecutor,
        notifier: Notifier | None = None,
        max_workers: int = 4,
        budget_seconds: float = 50.0,
        failure_threshold: int | None = None,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.store = store
        self.monitor = monitor
        self.policy = policy
        self.executor = executor
        self.notifier = notifier
        self.max_workers = max_workers
        self.budget_seconds = budget_seconds
        self.failure_threshold = failure_threshold or policy.config.failure_threshold

    def run(self) -> PassSummary:
        """Run one pass and return its summary."""
        started = time.monotonic()
        deadline = started + self.budget_seconds
        deployments = self.store.list_deployments(status=ACTIVE, include_flagged=False)
        logger.info("Starting pass over %d active deployments", len(deployments))

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="pass") as pool:
            futures = [pool.submit(self._process, deployment, deadline) for deployment in deployments]
            reports = [future.result() for future in futures]

        summary = PassSummary()
        for report in reports:
            summary.add(report)

        logger.info(
            "Pass finished in %.1fs: checked=%d scaled_up=%d scaled_down=%d errors=%d deferred=%d",
            time.monotonic() - started, summary.checked, summary.scaled_up,
            summary.scaled_down, summary.errors, summary.deferred,
        )
        return summary

    def _process(self, deployment, deadline: float) -> DeploymentReport:
        if time.monotonic() >= deadline:
            return DeploymentReport(
                deployment_id=deployment.id,
                decision_reason="pass budget exhausted",
                outcome=OUTCOME_DEFERRED,
            )
        try:
            return self._pipeline(deployment)
        except Exception as exc:
            logger.exception("Unexpected error processing deployment %s", deployment.id)
            return DeploymentReport(
                deployment_id=deployment.id,
                decision_reason=f"unexpected error: {exc}",
                outcome=OUTCOME_ERROR,
            )

    def _pipeline(self, deployment) -> DeploymentReport:
        report = DeploymentReport(deployment_id=deployment.id)

        result = self.monitor.sample(deployment)
        if not result.ok:
            self.store.record_sample_failure(deployment.id, self.failure_threshold)
            if not result.error.transient:
                self.store.flag_for_attention(deployment.id, f"sampling failed: {result.error}")
            report.decision_reason = f"sampling failed: {result.error}"
            report.outcome = OUTCOME_ERROR
            return report

        report.usage = result.utilization.as_dict()
        self.store.record_sample_success(
            deployment.id,
            assess_health(result.utilization, result.usage.state, result.usage.suspended),
        )

        samples = self.store.recent_samples(deployment.id, self.policy.config.history_window)
        # Skipped resizes never touched the panel and do not start a cooldown
        last_event = self.store.latest_scaling_event(deployment.id, outcomes=COOLDOWN_OUTCOMES)
        decision = self.policy.decide(
            deployment, samples, last_scaled_at=last_event.decided_at if last_event else None
        )
        logger.info("Deployment %s: %s", deployment.id, decision)
        report.decision_reason = decision.reason
        report.direction = decision.direction.value

        if not decision.should_scale:
            return report
        if result.usage.suspended:
            report.decision_reason = f"{decision.reason} (not applied: server suspended)"
            report.outcome = OUTCOME_SKIPPED
            return report

        try:
            event = self.executor.update_resources(
                deployment.id,
                decision.new_tier,
                reason=decision.reason,
                direction=decision.direction,
                expected_tier=decision.current_tier,
                triggered_by="auto-scaler",
            )
        except OperationInProgressError as exc:
            report.decision_reason = f"{decision.reason} (skipped: {exc})"
            report.outcome = OUTCOME_SKIPPED
            return report
        except HostingError as exc:
            if not exc.transient:
                self.store.flag_for_attention(deployment.id, f"resize failed: {exc}")
            report.decision_reason = f"{decision.reason} (resize failed: {exc})"
            report.outcome = OUTCOME_ERROR
            return report

        if event.outcome == SKIPPED:
            report.decision_reason = event.reason
            report.outcome = OUTCOME_SKIPPED
            return report

        report.scaled = True
        report.outcome = OUTCOME_SCALED
        if self.notifier is not None:
            updated = self.store.get_deployment(deployment.id)
            self.notifier.scaling_applied(
                updated, event.direction, event.old_tier, event.new_tier, event.new_resources
            )
        return report
