"""Exception types raised by the recommendation core.

Store timeouts have no exception here: a bounded read reports them as a
``StoreTimeout`` outcome and the constraint resolver turns that into an
empty result.
"""

from __future__ import annotations


class RecommenderError(RuntimeError):
    """Base class for every error the engine surfaces to its caller."""


class StoreError(RecommenderError):
    """Reading the event store failed for a reason other than a timeout."""


class MalformedEventError(RecommenderError):
    """An event is missing the target entity ID the reader relies on."""


class EmptyModelInputError(RecommenderError):
    """Training data is empty or unusable; raised at model-build time only."""


class ModelIntegrityError(RecommenderError):
    """A loaded model breaks the feature-vector rank invariant."""
