"""Provider descriptors and health state.

The registry itself lives in :mod:`studybuddy_brain.model.registry` because it
depends on the fetcher backends, which in turn depend on the descriptor.
"""

from .descriptor import COMPLETION, EMBEDDING, ProviderDescriptor
from .health import HealthState, HealthStatus

__all__ = ["COMPLETION", "EMBEDDING", "ProviderDescriptor", "HealthState", "HealthStatus"]
