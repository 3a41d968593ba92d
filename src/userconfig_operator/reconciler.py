"""Reconciliation engine for UserConfig entities.

One call to ``Reconciler.reconcile`` brings the derived state of a single
UserConfig in line with its spec:

1. Entity gone: nothing to do.
2. Entity marked for deletion: if the finalizer is present, delete the
   namespace (which cascades to everything inside it), then release the
   finalizer. Without the finalizer there is nothing left to clean up.
3. Finalizer absent: persist it before creating anything, so no derived
   object can outlive the entity.
4. Run the steps in order: namespace and quota, sealed secrets, RBAC,
   limit range, credential, network policy. A failing step stops the
   pass, except the credential step, whose failure is recorded while the
   network policy is still applied.
5. Write the outcome to status (Active on success, Error otherwise).

Every step converges with read-then-write, so an invocation can be
repeated at any point and a converged entity costs only reads. Retry is
re-delivery: ``run`` polls all entities on an interval and re-invokes
``reconcile`` for each, at most once per pass.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import partial
from typing import Any

from pydantic import ValidationError

from .cluster import ClusterClient, NotFoundError
from .config import MAX_STATUS_CONDITIONS, OperatorConfig
from .converge import Outcome, ensure
from .credentials import (
    ClusterInfo,
    CredentialError,
    PreconditionNotMetError,
    issue_kubeconfig,
    load_cluster_info,
)
from .models import (
    READY_CONDITION,
    REASON_ERROR,
    REASON_PRECONDITION,
    REASON_RECONCILED,
    Condition,
    ObjectMeta,
    State,
    UserConfig,
    UserConfigStatus,
    utc_now,
)
from .resources import (
    MERGES,
    kubeconfig_secret_name,
    namespace_name,
    render_limit_range,
    render_namespace,
    render_network_policy,
    render_resource_quota,
    render_role,
    render_role_binding,
    render_sealed_secrets,
    render_service_accounts,
    unrecognized_resources,
)

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "UserConfig reconciled successfully"


class ReconcileStepError(Exception):
    """A reconcile step failed; wraps the underlying cause."""

    def __init__(self, step: str, cause: Exception) -> None:
        super().__init__(f"Failed to reconcile {step}: {cause}")
        self.step = step
        self.cause = cause


@dataclass
class ReconcileResult:
    """Result of a single reconcile invocation."""

    name: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    state: State | None = None
    outcomes: dict[str, Outcome] = field(default_factory=dict)
    deleted: bool = False
    skipped: bool = False
    status_written: bool = False
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def changes_applied(self) -> int:
        """Number of derived objects created or updated."""
        return sum(1 for outcome in self.outcomes.values() if outcome != Outcome.UNCHANGED)

    @property
    def success(self) -> bool:
        """Check if reconciliation succeeded."""
        return self.error is None


def next_status(
    current: UserConfigStatus, state: State, condition: Condition
) -> UserConfigStatus | None:
    """Compute the status to write, or None when nothing changed.

    A condition identical to the latest recorded one is not appended again,
    and the history keeps only the newest ``MAX_STATUS_CONDITIONS`` entries.
    """
    conditions = list(current.conditions)
    if not conditions or not conditions[-1].same_as(condition):
        conditions.append(condition)
    conditions = conditions[-MAX_STATUS_CONDITIONS:]

    if current.state == state and conditions == current.conditions:
        return None
    return UserConfigStatus(state=state, last_updated=utc_now(), conditions=conditions)


class Reconciler:
    """Reconciles UserConfig entities against the cluster.

    Invocations for different entities share no mutable state besides the
    cached cluster endpoint, so ``run`` dispatches them in parallel.
    """

    def __init__(
        self,
        config: OperatorConfig,
        cluster: ClusterClient,
        cluster_info_loader: Callable[[], ClusterInfo] | None = None,
    ) -> None:
        """Initialize reconciler.

        Args:
            config: Validated operator configuration.
            cluster: Cluster adapter.
            cluster_info_loader: Resolves the endpoint for issued kubeconfigs.
                Defaults to ``load_cluster_info(config)``.
        """
        self._config = config
        self._cluster = cluster
        self._cluster_info_loader = cluster_info_loader or partial(load_cluster_info, config)
        self._cluster_info: ClusterInfo | None = None
        self._shutdown_event = asyncio.Event()

    @property
    def config(self) -> OperatorConfig:
        """Get the reconciler configuration."""
        return self._config

    # =========================================================================
    # Delivery loop
    # =========================================================================

    async def run(self) -> None:
        """Run reconcile passes at the configured interval until shutdown."""
        logger.info(
            "Starting reconciler",
            extra={
                "crd": f"{self._config.crd_plural}.{self._config.crd_group}",
                "interval_seconds": self._config.reconcile_interval_seconds,
                "max_concurrent_reconciles": self._config.max_concurrent_reconciles,
            },
        )

        while not self._shutdown_event.is_set():
            await self.reconcile_all()

            # Wait for next pass or shutdown
            try:
                await asyncio.wait_for(
                    self._shutdown_event.wait(),
                    timeout=self._config.reconcile_interval_seconds,
                )
            except TimeoutError:
                pass

        logger.info("Reconciler shutdown complete")

    def shutdown(self) -> None:
        """Signal the reconciler to stop."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    async def reconcile_all(self) -> list[ReconcileResult]:
        """Reconcile every UserConfig once, in parallel up to the concurrency limit."""
        try:
            items = await asyncio.to_thread(self._cluster.list_user_configs)
        except Exception as e:
            logger.error("Failed to list UserConfigs", extra={"error": str(e)})
            return []

        # One invocation per entity per pass
        names = list(dict.fromkeys(item["metadata"]["name"] for item in items))
        semaphore = asyncio.Semaphore(self._config.max_concurrent_reconciles)

        async def reconcile_one(name: str) -> ReconcileResult:
            async with semaphore:
                return await asyncio.to_thread(self.reconcile, name)

        results = await asyncio.gather(*(reconcile_one(name) for name in names))
        for result in results:
            self._log_result(result)
        return list(results)

    # =========================================================================
    # Single entity
    # =========================================================================

    def reconcile(self, name: str) -> ReconcileResult:
        """Reconcile one UserConfig by name.

        Never raises for cluster or input failures; they are written to
        status and returned in ``ReconcileResult.error``.
        """
        result = ReconcileResult(name=name)
        try:
            self._reconcile(name, result)
        except Exception as e:
            logger.exception("Unexpected reconcile failure", extra={"userconfig": name})
            result.error = e
        finally:
            result.end_time = datetime.now(UTC)
        return result

    def _reconcile(self, name: str, result: ReconcileResult) -> None:
        try:
            raw = self._cluster.get_user_config(name)
        except NotFoundError:
            logger.debug("UserConfig no longer exists", extra={"userconfig": name})
            result.skipped = True
            return
        except Exception as e:
            logger.error("Failed to read UserConfig", extra={"userconfig": name, "error": str(e)})
            result.error = e
            return

        meta = ObjectMeta.model_validate(raw.get("metadata") or {})
        if meta.deletion_timestamp is not None:
            self._handle_deletion(raw, meta, result)
            return

        if self._config.finalizer not in meta.finalizers:
            try:
                raw = self._add_finalizer(raw)
            except Exception as e:
                self._fail(raw, result, ReconcileStepError("finalizer", e))
                return

        try:
            uc = UserConfig.model_validate(raw)
        except ValidationError as e:
            self._fail(raw, result, ReconcileStepError("spec", e))
            return

        if uc.status.state is None:
            raw = self._mark_pending(raw, result)

        deferred: ReconcileStepError | None = None
        steps: list[tuple[str, Callable[[UserConfig, ReconcileResult], None]]] = [
            ("namespace", self._step_namespace),
            ("sealed secrets", self._step_sealed_secrets),
            ("RBAC", self._step_rbac),
            ("LimitRange", self._step_limit_range),
            ("kubeconfig", self._step_kubeconfig),
            ("network policy", self._step_network_policy),
        ]
        for step, run_step in steps:
            try:
                run_step(uc, result)
            except CredentialError as e:
                deferred = ReconcileStepError(step, e)
                logger.warning(
                    "Credential step failed, continuing with remaining steps",
                    extra={"userconfig": name, "step": step, "error": str(e)},
                )
            except Exception as e:
                logger.exception(
                    "Reconcile step failed", extra={"userconfig": name, "step": step}
                )
                self._fail(raw, result, ReconcileStepError(step, e))
                return

        if deferred is not None:
            self._fail(raw, result, deferred)
            return

        self._write_status(raw, result, State.ACTIVE, self._ready_condition(uc))

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def _ensure(self, desired: dict[str, Any], result: ReconcileResult) -> None:
        kind = desired["kind"]
        meta = desired["metadata"]
        outcome = ensure(self._cluster, kind, desired, MERGES[kind])
        namespace = meta.get("namespace")
        key = f"{kind}/{namespace}/{meta['name']}" if namespace else f"{kind}/{meta['name']}"
        result.outcomes[key] = outcome

    def _step_namespace(self, uc: UserConfig, result: ReconcileResult) -> None:
        self._ensure(render_namespace(uc, self._config), result)
        self._ensure(render_resource_quota(uc, self._config), result)

    def _step_sealed_secrets(self, uc: UserConfig, result: ReconcileResult) -> None:
        for envelope in render_sealed_secrets(uc, self._config):
            self._ensure(envelope, result)

    def _step_rbac(self, uc: UserConfig, result: ReconcileResult) -> None:
        self._ensure(render_role(uc, self._config), result)
        for account in render_service_accounts(uc, self._config):
            self._ensure(account, result)
        self._ensure(render_role_binding(uc, self._config), result)

    def _step_limit_range(self, uc: UserConfig, result: ReconcileResult) -> None:
        self._ensure(render_limit_range(uc, self._config), result)

    def _step_kubeconfig(self, uc: UserConfig, result: ReconcileResult) -> None:
        if self._cluster_info is None:
            self._cluster_info = self._cluster_info_loader()
        outcome = issue_kubeconfig(self._cluster, uc, self._config, self._cluster_info)
        result.outcomes[f"Secret/{namespace_name(uc)}/{kubeconfig_secret_name(uc)}"] = outcome

    def _step_network_policy(self, uc: UserConfig, result: ReconcileResult) -> None:
        self._ensure(render_network_policy(uc, self._config), result)

    # -------------------------------------------------------------------------
    # Deletion and finalizer
    # -------------------------------------------------------------------------

    def _handle_deletion(
        self, raw: dict[str, Any], meta: ObjectMeta, result: ReconcileResult
    ) -> None:
        """Tear down the namespace and release the finalizer."""
        finalizer = self._config.finalizer
        if finalizer not in meta.finalizers:
            result.skipped = True
            return

        try:
            self._cluster.delete("Namespace", meta.name)
            logger.info("Deleted namespace", extra={"userconfig": meta.name})
        except NotFoundError:
            logger.debug("Namespace already gone", extra={"userconfig": meta.name})
        except Exception as e:
            self._fail(raw, result, ReconcileStepError("deletion", e))
            return

        raw["metadata"]["finalizers"] = [f for f in meta.finalizers if f != finalizer]
        try:
            self._cluster.replace_user_config(raw)
        except NotFoundError:
            pass
        except Exception as e:
            self._fail(raw, result, ReconcileStepError("finalizer removal", e))
            return

        result.deleted = True
        logger.info("Released finalizer", extra={"userconfig": meta.name})

    def _add_finalizer(self, raw: dict[str, Any]) -> dict[str, Any]:
        metadata = raw.setdefault("metadata", {})
        metadata["finalizers"] = [*(metadata.get("finalizers") or []), self._config.finalizer]
        updated = self._cluster.replace_user_config(raw)
        logger.info("Added finalizer", extra={"userconfig": metadata.get("name")})
        return updated

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def _ready_condition(self, uc: UserConfig) -> Condition:
        message = SUCCESS_MESSAGE
        unknown = unrecognized_resources(uc)
        if unknown:
            message += (
                f"; unrecognized resources mapped to API group "
                f"'{self._config.fallback_api_group}': {', '.join(unknown)}"
            )
        return Condition(
            type=READY_CONDITION, status="True", reason=REASON_RECONCILED, message=message
        )

    def _mark_pending(self, raw: dict[str, Any], result: ReconcileResult) -> dict[str, Any]:
        status = UserConfigStatus(state=State.PENDING, last_updated=utc_now())
        name = raw["metadata"]["name"]
        try:
            updated = self._cluster.patch_user_config_status(name, status.to_dict())
        except Exception as e:
            logger.warning(
                "Failed to initialize status", extra={"userconfig": name, "error": str(e)}
            )
            return raw
        result.state = State.PENDING
        result.status_written = True
        return updated

    def _fail(
        self, raw: dict[str, Any], result: ReconcileResult, error: ReconcileStepError
    ) -> None:
        reason = (
            REASON_PRECONDITION if isinstance(error.cause, PreconditionNotMetError) else REASON_ERROR
        )
        condition = Condition(
            type=READY_CONDITION, status="False", reason=reason, message=str(error)
        )
        result.error = error
        self._write_status(raw, result, State.ERROR, condition)

    def _write_status(
        self,
        raw: dict[str, Any],
        result: ReconcileResult,
        state: State,
        condition: Condition,
    ) -> None:
        name = raw["metadata"]["name"]
        try:
            current = UserConfigStatus.model_validate(raw.get("status") or {})
        except ValidationError:
            current = UserConfigStatus()

        result.state = state
        status = next_status(current, state, condition)
        if status is None:
            return

        try:
            self._cluster.patch_user_config_status(name, status.to_dict())
            result.status_written = True
        except Exception as e:
            logger.error("Failed to update status", extra={"userconfig": name, "error": str(e)})
            if result.error is None:
                result.error = e

    def _log_result(self, result: ReconcileResult) -> None:
        """Log reconciliation result with structured data."""
        extra: dict[str, Any] = {
            "userconfig": result.name,
            "duration_seconds": result.duration_seconds,
            "state": result.state.value if result.state else None,
            "changes_applied": result.changes_applied,
            "deleted": result.deleted,
            "status_written": result.status_written,
        }

        if result.error is not None:
            extra["error"] = str(result.error)
            logger.error("Reconciliation failed", extra=extra)
        elif result.skipped:
            logger.debug("Reconciliation skipped", extra=extra)
        else:
            logger.info("Reconciliation result", extra=extra)
