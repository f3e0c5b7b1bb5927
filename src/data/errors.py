"""
Exceptions raised while loading and preparing the cohort.
"""


class DataLoadError(IOError):
    """The CSV resource could not be fetched or parsed."""


class SchemaError(ValueError):
    """The cohort does not match the declared input schema."""


class DegenerateCohortError(ValueError):
    """A numeric covariate has zero variance and cannot be standardized."""
