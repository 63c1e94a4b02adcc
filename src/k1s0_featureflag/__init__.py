"""k1s0 featureflag library."""

from .client import BaseFlagsClient, FlagsClientProtocol
from .config import (
    DEFAULT_API_HOST,
    EU_API_HOST,
    FlagsConfig,
    LocalFlagsConfig,
    RemoteFlagsConfig,
    build_config,
    load_config,
)
from .evaluator import evaluate, select_by_split
from .exceptions import FeatureFlagError, FeatureFlagErrorCodes
from .exposure import EXPOSURE_EVENT, ExposureTracker
from .hashing import normalized_hash, rollout_hash, variant_hash
from .local import ClientState, DefinitionsFetcher, LocalFlagsClient
from .memory import InMemoryFeatureFlagClient
from .models import (
    EvaluationContext,
    ExperimentationFlag,
    Rollout,
    RuleSet,
    SelectedVariant,
    Variant,
    VariantOverride,
)
from .parser import parse_definitions
from .remote import RemoteFlagsClient
from .rules import apply_logic, matches, matches_legacy
from .tracing import TraceContext, generate_traceparent

__all__ = [
    "BaseFlagsClient",
    "ClientState",
    "DEFAULT_API_HOST",
    "DefinitionsFetcher",
    "EU_API_HOST",
    "EXPOSURE_EVENT",
    "EvaluationContext",
    "ExperimentationFlag",
    "ExposureTracker",
    "FeatureFlagError",
    "FeatureFlagErrorCodes",
    "FlagsClientProtocol",
    "FlagsConfig",
    "InMemoryFeatureFlagClient",
    "LocalFlagsClient",
    "LocalFlagsConfig",
    "RemoteFlagsClient",
    "RemoteFlagsConfig",
    "Rollout",
    "RuleSet",
    "SelectedVariant",
    "TraceContext",
    "Variant",
    "VariantOverride",
    "apply_logic",
    "build_config",
    "evaluate",
    "generate_traceparent",
    "load_config",
    "matches",
    "matches_legacy",
    "normalized_hash",
    "parse_definitions",
    "rollout_hash",
    "select_by_split",
    "variant_hash",
]
