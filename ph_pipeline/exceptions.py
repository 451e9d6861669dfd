"""Error types raised by the pipeline phases."""


class PipelineError(ValueError):
    """Base class for fatal pipeline errors."""


class DataSchemaError(PipelineError):
    """Missing expected column or train/evaluation schema mismatch."""


class ImputationError(PipelineError):
    """Imputation could not produce a complete dataset."""


class ModelTrainingError(PipelineError):
    """A single model family failed to train (degenerate input, non-convergence)."""


class EvaluationError(PipelineError):
    """Metrics cannot be computed (e.g. empty holdout)."""


class DecompositionError(PipelineError):
    """Series is unsuitable for the requested decomposition."""
