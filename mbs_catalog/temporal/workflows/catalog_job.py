from datetime import timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError

with workflow.unsafe.imports_passed_through():
    from mbs_catalog.temporal.constants import (
        CATALOG_JOB_WORKFLOW,
        JOB_ACTIVITIES,
        MARK_JOB_FAILED_ACTIVITY,
        MARK_JOB_FINISHED_ACTIVITY,
        NON_RETRYABLE_ERROR_TYPES,
    )

BOOKKEEPING_TIMEOUT = timedelta(seconds=30)
BOOKKEEPING_RETRY = RetryPolicy(
    initial_interval=timedelta(seconds=1),
    maximum_interval=timedelta(seconds=30),
    maximum_attempts=10,
)


@workflow.defn(name=CATALOG_JOB_WORKFLOW)
class CatalogJobWorkflow:
    """Runs one persisted catalog job and records its terminal state.

    The job's retry policy snapshot is applied to the stage activity, so
    attempts and backoff follow the per-kind policy chosen at enqueue time.
    """

    def __init__(self) -> None:
        self._status = "starting"
        self._job_id = None
        self._kind = None

    @workflow.run
    async def run(self, job_id: str, kind: str, payload: dict, retry: dict) -> dict:
        self._job_id = job_id
        self._kind = kind
        self._status = "running"

        workflow.logger.info(f"Starting {kind} job {job_id}")

        try:
            result = await workflow.execute_activity(
                JOB_ACTIVITIES[kind],
                args=[job_id, payload],
                start_to_close_timeout=timedelta(seconds=retry["start_to_close_seconds"]),
                heartbeat_timeout=timedelta(seconds=retry["heartbeat_seconds"]),
                retry_policy=RetryPolicy(
                    initial_interval=timedelta(seconds=retry["initial_backoff_seconds"]),
                    backoff_coefficient=retry["backoff_coefficient"],
                    maximum_interval=timedelta(seconds=retry["max_backoff_seconds"]),
                    maximum_attempts=retry["max_attempts"],
                    non_retryable_error_types=NON_RETRYABLE_ERROR_TYPES,
                ),
            )
        except ActivityError as e:
            reason = str(e.cause) if e.cause is not None else str(e)
            workflow.logger.error(f"{kind} job {job_id} failed: {reason}")
            await workflow.execute_activity(
                MARK_JOB_FAILED_ACTIVITY,
                args=[job_id, reason],
                start_to_close_timeout=BOOKKEEPING_TIMEOUT,
                retry_policy=BOOKKEEPING_RETRY,
            )
            self._status = "failed"
            return {"job_id": job_id, "state": "failed", "failure_reason": reason}

        state = "cancelled" if result.get("cancelled") else "completed"
        await workflow.execute_activity(
            MARK_JOB_FINISHED_ACTIVITY,
            args=[job_id, state, result],
            start_to_close_timeout=BOOKKEEPING_TIMEOUT,
            retry_policy=BOOKKEEPING_RETRY,
        )
        self._status = state

        workflow.logger.info(f"{kind} job {job_id} {state}")
        return {"job_id": job_id, "state": state, "result": result}

    @workflow.query
    def get_status(self) -> dict:
        return {"job_id": self._job_id, "kind": self._kind, "status": self._status}
