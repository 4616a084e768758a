"""
Canary traffic shift engine.

Moves weight from the current target group to the desired one in fixed
steps, checking metrics between steps:

    INIT -> ADVANCING -> VERIFYING -> (ADVANCING ...) -> PROMOTING -> DONE
                             |
                             +-> ROLLING_BACK -> FAILED

Every write replaces the rule's whole action list, so the load balancer
never sees a partial update. A write that is already in flight is always
awaited to completion before cancellation is honoured.
"""

import asyncio
import builtins
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from ..errors import (
    ConfigurationError,
    CourierError,
    InconclusiveMetricsError,
    MetricCheckFailedError,
    MetricEvaluationError,
    MetricProviderError,
    RollbackFailedError,
    RuleLookupError,
    RuleWriteError,
    ShiftCancelledError,
    ShiftError,
    ShiftWriteError,
)
from ..logging import get_courier_logger
from ..metrics.models import Metric, MetricOutcome, MetricResult, TimeWindow
from ..metrics.registry import MetricProviderRegistry
from ..observability.metrics import ShiftMetrics
from ..resilience.retry import RetryConfig, RetryError, RetryManager, RetryStrategy
from ..routing.client import LoadBalancerClient
from ..routing.compiler import forward_weights, rewrite_forward_actions
from .enums import ShiftState
from .models import (
    MAX_WEIGHT,
    MIN_WEIGHT,
    CanaryOpts,
    ListenerStatus,
    ShiftEvent,
    ShiftResult,
    WeightSnapshot,
)

logger = logging.getLogger(__name__)


@dataclass
class _ShiftRun:
    """Mutable bookkeeping owned by a single invocation of the engine."""

    status: ListenerStatus
    origin: WeightSnapshot
    actions: builtins.list[builtins.dict[str, Any]]
    state: ShiftState = ShiftState.INIT
    last_written: WeightSnapshot | None = None
    rule: builtins.dict[str, Any] = field(default_factory=dict)
    steps: int = 0
    history: builtins.list[WeightSnapshot] = field(default_factory=list)
    events: builtins.list[ShiftEvent] = field(default_factory=list)

    @property
    def rule_arn(self) -> str:
        return self.status.rule_arn

    @property
    def applied(self) -> WeightSnapshot:
        """Weights the load balancer currently holds, as far as we know."""
        return self.last_written or self.origin

    def error(self, error_cls: type[ShiftError], message: str, **kwargs: Any) -> ShiftError:
        return error_cls(
            message,
            phase=self.state,
            last_written=self.applied,
            origin=self.origin,
            **kwargs,
        )


class TrafficShiftEngine:
    """Runs gradual, metric-gated traffic shifts on ALB listener rules.

    One engine may run shifts for different rules concurrently; all per-shift
    state lives in the invocation.
    """

    def __init__(
        self,
        client: LoadBalancerClient,
        providers: MetricProviderRegistry,
        opts: CanaryOpts,
        shift_metrics: ShiftMetrics | None = None,
    ):
        self.client = client
        self.providers = providers
        self.opts = opts
        self.shift_metrics = shift_metrics or ShiftMetrics()
        self.log = get_courier_logger(__name__)
        self._metric_retry = RetryManager(
            RetryConfig(
                max_attempts=opts.metric_retry_attempts,
                base_delay=opts.metric_retry_delay,
                strategy=RetryStrategy.EXPONENTIAL,
                retryable_exceptions=(MetricProviderError,),
            )
        )

    async def run(
        self, status: ListenerStatus, cancel_event: asyncio.Event | None = None
    ) -> ShiftResult:
        """Shift all traffic of ``status.rule`` to ``status.desired_tg``.

        Returns a ShiftResult on success. Every other outcome raises a
        ConfigurationError/RuleLookupError (nothing written) or a ShiftError
        subclass describing the failed phase and the last written weights.
        """
        cancel_event = cancel_event or asyncio.Event()
        started = time.monotonic()

        run = self._init(status)
        self.log.log_shift_started(
            run.rule_arn,
            run.origin.current_tg_arn,
            run.origin.desired_tg_arn,
            origin=run.origin.to_dict(),
            step=self.opts.advancement_step,
        )

        try:
            result = await self._drive(run, cancel_event)
        except ShiftError as e:
            self._transition(run, ShiftState.FAILED, error=type(e).__name__)
            self.shift_metrics.record_outcome(type(e).__name__)
            self.log.log_shift_finished(
                run.rule_arn,
                "failed",
                time.monotonic() - started,
                error=type(e).__name__,
                reason=str(e),
                failed_phase=e.phase.value,
                rolled_back=e.rolled_back,
                last_written=e.last_written.to_dict() if e.last_written else None,
            )
            raise
        except asyncio.CancelledError:
            self._transition(run, ShiftState.FAILED, error="CancelledError")
            self.shift_metrics.record_outcome("cancelled")
            raise

        self.shift_metrics.record_outcome("done")
        self.log.log_shift_finished(
            run.rule_arn, "done", time.monotonic() - started, steps=result.steps
        )
        return result

    def _init(self, status: ListenerStatus) -> _ShiftRun:
        """Validate everything before the first write."""
        self.opts.validate()
        self.providers.check_metrics(status.metrics)

        rule_arn = status.rule_arn
        listener_arn = status.listener_arn
        if not rule_arn:
            raise RuleLookupError("Rule has no RuleArn")
        if not listener_arn:
            raise RuleLookupError("Listener has no ListenerArn")
        if status.rule.get("IsDefault"):
            raise ConfigurationError("The listener's default rule cannot be shifted")
        if _listener_arn_of_rule(rule_arn) not in (None, listener_arn):
            raise RuleLookupError(f"Rule {rule_arn} does not belong to listener {listener_arn}")

        current_arn = status.current_tg.get("TargetGroupArn")
        desired_arn = status.desired_tg.get("TargetGroupArn")
        if not current_arn or not desired_arn:
            raise RuleLookupError("Current and desired target groups must both be resolved")
        if current_arn == desired_arn:
            raise ConfigurationError("Current and desired target group are the same")

        load_balancer_arn = status.listener.get("LoadBalancerArn")
        for tg in (status.current_tg, status.desired_tg):
            attached = tg.get("LoadBalancerArns") or []
            if load_balancer_arn and attached and load_balancer_arn not in attached:
                raise RuleLookupError(
                    f"Target group {tg['TargetGroupArn']} is not attached to {load_balancer_arn}"
                )

        actions = list(status.rule.get("Actions") or [])
        weights = forward_weights(actions)
        if set(weights) != {current_arn, desired_arn}:
            raise RuleLookupError(
                f"Rule {rule_arn} forwards to {sorted(weights)}, "
                f"expected exactly {current_arn} and {desired_arn}"
            )

        for arn, weight in weights.items():
            if not MIN_WEIGHT <= weight <= MAX_WEIGHT:
                raise ConfigurationError(
                    f"Weight {weight} of {arn} is outside {MIN_WEIGHT}..{MAX_WEIGHT}"
                )

        origin = WeightSnapshot(
            current_tg_arn=current_arn,
            current_weight=weights[current_arn],
            desired_tg_arn=desired_arn,
            desired_weight=weights[desired_arn],
            desired_first=next(iter(weights)) == desired_arn,
        )
        if origin.desired_weight > origin.current_weight:
            logger.info(
                f"Resuming shift of {rule_arn}: desired group already holds the larger share",
                extra={"rule_arn": rule_arn, "weights": origin.weights()},
            )

        run = _ShiftRun(status=status, origin=origin, actions=actions, rule=dict(status.rule))
        run.events.append(ShiftEvent(ShiftState.INIT, weights=origin.weights()))
        self.shift_metrics.set_weights(origin.weights())
        return run

    async def _drive(self, run: _ShiftRun, cancel_event: asyncio.Event) -> ShiftResult:
        try:
            while not run.applied.converged:
                if cancel_event.is_set():
                    raise run.error(ShiftCancelledError, "Shift cancelled before advancing")
                await self._advance(run)
                await self._verify(run, cancel_event)

            await self._promote(run)

        except (MetricCheckFailedError, ShiftCancelledError) as e:
            await self._roll_back(run, e)
            e.rolled_back = True
            e.last_written = run.applied
            raise

        except (InconclusiveMetricsError, MetricEvaluationError) as e:
            if self.opts.rollback_on_evaluation_error:
                await self._roll_back(run, e)
                e.rolled_back = True
                e.last_written = run.applied
            raise

        except asyncio.CancelledError as e:
            # Task cancelled from outside: restore, then let the cancellation
            # propagate. A failed restore is raised instead, chained to it.
            try:
                await self._roll_back(run, e)
            except RollbackFailedError as rollback_failure:
                logger.error(f"Rollback after cancellation of {run.rule_arn} failed")
                raise rollback_failure from e
            raise

        self._transition(run, ShiftState.DONE)
        return ShiftResult(
            state=ShiftState.DONE,
            origin=run.origin,
            final=run.applied,
            rule=run.rule,
            steps=run.steps,
            history=list(run.history),
            events=list(run.events),
            deleted_tgs=list(run.status.deleted_tgs),
        )

    async def _advance(self, run: _ShiftRun) -> None:
        self._transition(run, ShiftState.ADVANCING)
        target = run.applied.advance(self.opts.advancement_step)
        await self._write(run, target)
        run.steps += 1
        self.shift_metrics.record_step(run.rule_arn)

    async def _verify(self, run: _ShiftRun, cancel_event: asyncio.Event) -> None:
        self._transition(run, ShiftState.VERIFYING)
        await self._wait(run, self.opts.advancement_interval.total_seconds(), cancel_event)

        rechecks = 0
        while True:
            results = await self._evaluate_metrics(run, cancel_event)
            self.log.log_metric_results(run.rule_arn, [r.to_dict() for r in results])

            failures = [r for r in results if r.outcome is MetricOutcome.FAIL]
            if failures:
                names = ", ".join(r.metric.name for r in failures)
                raise run.error(
                    MetricCheckFailedError,
                    f"Metrics failed at {run.applied.desired_weight}% on desired group: {names}",
                    failures=failures,
                )

            pending = [r for r in results if r.outcome is MetricOutcome.INDETERMINATE]
            if not pending:
                return

            if rechecks >= self.opts.max_inconclusive_checks:
                names = ", ".join(r.metric.name for r in pending)
                raise run.error(
                    InconclusiveMetricsError,
                    f"Metrics still indeterminate after {rechecks} re-checks: {names}",
                )

            rechecks += 1
            logger.warning(
                f"{len(pending)} metrics indeterminate; re-check {rechecks}/"
                f"{self.opts.max_inconclusive_checks}",
                extra={"rule_arn": run.rule_arn},
            )
            await self._wait(run, self.opts.inconclusive_retry_interval.total_seconds(), cancel_event)

    async def _promote(self, run: _ShiftRun) -> None:
        self._transition(run, ShiftState.PROMOTING)
        drop_current = self.opts.remove_drained_destination
        await self._write(run, run.applied.promoted(), drop_current=drop_current)

        if drop_current and run.origin.current_tg_arn not in run.status.deleted_tgs:
            run.status.deleted_tgs.append(run.origin.current_tg_arn)

    async def _roll_back(self, run: _ShiftRun, cause: BaseException) -> None:
        self._transition(run, ShiftState.ROLLING_BACK, cause=type(cause).__name__)

        if run.applied == run.origin:
            logger.info(f"Nothing to roll back on {run.rule_arn}; origin weights still applied")
            return

        try:
            await self._write(run, run.origin)
        except RuleWriteError as e:
            raise RollbackFailedError(
                f"Rollback of {run.rule_arn} failed after {type(cause).__name__}: {e}",
                cause=cause,
                rollback_error=e,
                phase=ShiftState.ROLLING_BACK,
                last_written=run.applied,
                origin=run.origin,
            ) from e

        logger.info(
            f"Rolled back {run.rule_arn} to origin weights",
            extra={"rule_arn": run.rule_arn, "weights": run.origin.weights()},
        )

    async def _write(self, run: _ShiftRun, target: WeightSnapshot, drop_current: bool = False) -> None:
        """Write ``target`` to the rule, translating failures per phase.

        The call is shielded: if the surrounding task is cancelled while the
        request is in flight, its outcome is still awaited and recorded
        before the cancellation propagates.
        """
        actions = rewrite_forward_actions(run.actions, target.destinations(drop_current))
        write = asyncio.ensure_future(self.client.modify_rule(run.rule_arn, actions))

        try:
            rule = await asyncio.shield(write)
        except asyncio.CancelledError:
            try:
                rule = await write
            except RuleWriteError as e:
                self.shift_metrics.record_rule_write("modify_rule", success=False)
                logger.error(f"Write to {run.rule_arn} failed during cancellation: {e}")
            else:
                self._record_write(run, target, actions, rule)
            raise
        except RuleWriteError as e:
            self.shift_metrics.record_rule_write("modify_rule", success=False)
            if run.state is ShiftState.ROLLING_BACK:
                raise
            raise run.error(
                ShiftWriteError,
                f"Writing weights {target.weights()} to {run.rule_arn} failed: {e}",
            ) from e

        self._record_write(run, target, actions, rule)

    def _record_write(
        self,
        run: _ShiftRun,
        target: WeightSnapshot,
        actions: builtins.list[builtins.dict[str, Any]],
        rule: builtins.dict[str, Any],
    ) -> None:
        run.last_written = target
        run.actions = actions
        run.rule = {**run.rule, **rule, "Actions": actions}
        run.history.append(target)
        self.shift_metrics.record_rule_write("modify_rule", success=True)
        self.shift_metrics.set_weights(target.weights())
        self.log.log_weights_written(run.rule_arn, target.weights(), run.steps)

    async def _wait(self, run: _ShiftRun, seconds: float, cancel_event: asyncio.Event) -> None:
        """Sleep for ``seconds`` unless the cancellation signal fires first."""
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise run.error(ShiftCancelledError, f"Shift of {run.rule_arn} cancelled while waiting")

    async def _evaluate_metrics(
        self, run: _ShiftRun, cancel_event: asyncio.Event
    ) -> builtins.list[MetricResult]:
        """Evaluate every metric, aborting as soon as cancellation is signalled."""
        if cancel_event.is_set():
            raise run.error(ShiftCancelledError, f"Shift of {run.rule_arn} cancelled")

        evaluation = asyncio.ensure_future(self._evaluate_all(run, run.status.metrics))
        cancelled = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({evaluation, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()
            if not evaluation.done():
                evaluation.cancel()
                await asyncio.gather(evaluation, return_exceptions=True)

        if cancel_event.is_set():
            raise run.error(
                ShiftCancelledError, f"Shift of {run.rule_arn} cancelled during metric evaluation"
            )
        return evaluation.result()

    async def _evaluate_all(
        self, run: _ShiftRun, metrics: builtins.list[Metric]
    ) -> builtins.list[MetricResult]:
        results = []
        for metric in metrics:
            provider = self.providers.provider_for(metric)
            window = TimeWindow.ending_now(metric.interval or self.opts.advancement_interval)
            try:
                result = await self._metric_retry.execute_async(provider.evaluate, metric, window)
            except RetryError as e:
                self.shift_metrics.record_metric_check(metric.provider.value, "error")
                raise run.error(
                    MetricEvaluationError,
                    f"Metric {metric.name} could not be evaluated after "
                    f"{e.attempts} attempts: {e.last_exception}",
                ) from e.last_exception
            except CourierError:
                raise
            except Exception as e:
                self.shift_metrics.record_metric_check(metric.provider.value, "error")
                raise run.error(
                    MetricEvaluationError,
                    f"Metric {metric.name} raised {type(e).__name__}: {e}",
                ) from e
            self.shift_metrics.record_metric_check(metric.provider.value, result.outcome.value)
            results.append(result)
        return results

    def _transition(self, run: _ShiftRun, state: ShiftState, **details: Any) -> None:
        previous = run.state
        run.state = state
        run.events.append(ShiftEvent(state, weights=run.applied.weights(), details=details))
        self.log.log_state_transition(run.rule_arn, previous.value, state.value)


def _listener_arn_of_rule(rule_arn: str) -> str | None:
    """Derive the listener ARN from a listener-rule ARN, if it has that shape.

    arn:...:listener-rule/app/<lb>/<lb-id>/<listener-id>/<rule-id>
    """
    if ":listener-rule/" not in rule_arn:
        return None
    prefix, _, _rule_id = rule_arn.rpartition("/")
    return prefix.replace(":listener-rule/", ":listener/", 1)


async def do_gradual_traffic_shift(
    client: LoadBalancerClient,
    providers: MetricProviderRegistry,
    status: ListenerStatus,
    opts: CanaryOpts,
    cancel_event: asyncio.Event | None = None,
    shift_metrics: ShiftMetrics | None = None,
) -> ShiftResult:
    """Run one shift with a throwaway engine."""
    engine = TrafficShiftEngine(client, providers, opts, shift_metrics=shift_metrics)
    return await engine.run(status, cancel_event)
