"""Workflow and activity names shared by the scheduler, workflows and worker."""

CATALOG_JOB_WORKFLOW = "CatalogJobWorkflow"

INGEST_ACTIVITY = "run_ingest_job_activity"
EMBED_ACTIVITY = "run_embed_job_activity"
REINDEX_ACTIVITY = "run_reindex_job_activity"
MARK_JOB_FINISHED_ACTIVITY = "mark_job_finished_activity"
MARK_JOB_FAILED_ACTIVITY = "mark_job_failed_activity"

JOB_ACTIVITIES = {
    "ingest": INGEST_ACTIVITY,
    "embed": EMBED_ACTIVITY,
    "reindex": REINDEX_ACTIVITY,
}

# Error types that must not be retried: the input will not change between attempts
NON_RETRYABLE_ERROR_TYPES = [
    "InputError",
    "FileTooLargeError",
    "UnsafeXmlError",
    "MalformedXmlError",
    "ConfigurationError",
]
