"""
Exception taxonomy shared by the retrieval, training and debate services.
"""

from typing import Optional


class PersonaGraphError(Exception):
    """Base exception for the persona graph system."""
    pass


class TransientServiceError(PersonaGraphError):
    """A remote service (embeddings, completions, vector or graph store) call failed.

    Callers may retry these; every other error in this module indicates a problem
    that retrying will not fix.
    """
    pass


class ValidationError(PersonaGraphError):
    """Malformed input, e.g. a debate without exactly two participants."""
    pass


class ParseError(PersonaGraphError):
    """Structured model output could not be parsed."""
    pass


class NotFoundError(PersonaGraphError):
    """A persona, debate or conversation does not exist."""
    pass


class TrainingError(PersonaGraphError):
    """A training stage failed after exhausting its retries."""

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage
