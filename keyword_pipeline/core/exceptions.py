"""Custom exception classes for the keyword pipeline."""

from typing import Any


class KeywordPipelineError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(KeywordPipelineError):
    """Typed configuration failed validation."""

    pass


# Clustering Errors
class ClusteringError(KeywordPipelineError):
    """Clustering hit an internal invariant violation."""

    pass


# Batch Errors
class BatchError(KeywordPipelineError):
    """Base class for batch orchestration errors."""

    pass


class BatchNotInitializedError(BatchError):
    """Batch processing was started before initialize()."""

    def __init__(self) -> None:
        super().__init__("Batch processing not initialized. Call initialize() first.")


class BatchAlreadyRunningError(BatchError):
    """A batch run is already in progress on this orchestrator."""

    def __init__(self, batch_run_id: str) -> None:
        super().__init__(
            f"Batch run already in progress: {batch_run_id}",
            {"batch_run_id": batch_run_id},
        )


class BatchNotRunningError(BatchError):
    """Pause requested while no batch run is in progress."""

    def __init__(self, batch_run_id: str) -> None:
        super().__init__(
            f"No batch processing session is currently running: {batch_run_id}",
            {"batch_run_id": batch_run_id},
        )


class BatchPauseUnavailableError(BatchError):
    """Pause requested after cleaning finished; later stages run to completion."""

    def __init__(self, batch_run_id: str, stage: str) -> None:
        super().__init__(
            f"Batch run can only pause during cleaning: {batch_run_id} is in {stage}",
            {"batch_run_id": batch_run_id, "stage": stage},
        )


class BatchProcessingError(BatchError):
    """A stage failed; the batch run is marked failed and not retried."""

    def __init__(
        self,
        *,
        stage: str,
        message: str,
        last_completed_stage: str | None,
        processed_keywords: int,
    ) -> None:
        self.stage = stage
        self.last_completed_stage = last_completed_stage
        self.processed_keywords = processed_keywords
        super().__init__(
            f"Batch processing failed during {stage}: {message}",
            {
                "stage": stage,
                "last_completed_stage": last_completed_stage,
                "processed_keywords": processed_keywords,
            },
        )


class NoRecoverableCheckpointError(BatchError):
    """No recoverable checkpoint exists for the batch run."""

    def __init__(self, batch_run_id: str) -> None:
        super().__init__(
            f"No recoverable checkpoint found for batch run: {batch_run_id}",
            {"batch_run_id": batch_run_id},
        )


# Checkpoint Errors
class CheckpointError(KeywordPipelineError):
    """Base class for checkpoint persistence errors."""

    pass


class CheckpointIntegrityError(CheckpointError):
    """Checkpoint validation hash does not match its contents."""

    def __init__(self, checkpoint_id: str) -> None:
        super().__init__(
            f"Checkpoint validation failed - data may be corrupted: {checkpoint_id}",
            {"checkpoint_id": checkpoint_id},
        )


class CheckpointSerializationError(CheckpointError):
    """Checkpoint state could not be encoded or decoded."""

    def __init__(self, message: str) -> None:
        super().__init__(f"State serialization failed: {message}")
