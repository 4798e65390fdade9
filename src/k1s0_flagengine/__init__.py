"""k1s0 flagengine library."""

from .backoff import Backoff
from .client import LocalEvaluationClient
from .config import ClientConfig, load_config
from .context import (
    Condition,
    EnvironmentContext,
    EvaluationContext,
    EvaluationResult,
    FeatureContext,
    FeatureVariant,
    FlagResult,
    IdentityContext,
    Operator,
    RuleType,
    SegmentContext,
    SegmentResult,
    SegmentRule,
)
from .conventions import DEFAULT_CONVENTIONS, EvaluationConventions, PercentageSplitComparison
from .engine import (
    get_environment_feature_state,
    get_environment_feature_states,
    get_evaluation_result,
    get_identity_feature_state,
    get_identity_feature_states,
    get_identity_segments,
    is_identity_in_segment,
)
from .evaluator import is_context_in_segment
from .exceptions import FlagEngineError, FlagEngineErrorCodes
from .fetcher import (
    EnvironmentFetcher,
    FileEnvironmentFetcher,
    HttpEnvironmentFetcher,
    read_environment_from_file,
)
from .flags import Flag, Flags
from .hashing import get_hashed_percentage_for_object_ids
from .logger import new_logger
from .mappers import map_context_and_identity_data_to_context, map_environment_document_to_context
from .models import EnvironmentModel, FeatureStateModel, IdentityModel, SegmentModel, TraitModel
from .realtime import EventStream, HttpEventStream, RealtimeListener
from .refresher import EnvironmentRefresher
from .state import EnvironmentSnapshot, EnvironmentState

__all__ = [
    "LocalEvaluationClient",
    "ClientConfig",
    "load_config",
    "Flag",
    "Flags",
    "EvaluationContext",
    "EnvironmentContext",
    "IdentityContext",
    "FeatureContext",
    "FeatureVariant",
    "SegmentContext",
    "SegmentRule",
    "Condition",
    "Operator",
    "RuleType",
    "EvaluationResult",
    "FlagResult",
    "SegmentResult",
    "EvaluationConventions",
    "PercentageSplitComparison",
    "DEFAULT_CONVENTIONS",
    "get_evaluation_result",
    "get_environment_feature_state",
    "get_environment_feature_states",
    "get_identity_feature_state",
    "get_identity_feature_states",
    "get_identity_segments",
    "is_identity_in_segment",
    "is_context_in_segment",
    "map_environment_document_to_context",
    "map_context_and_identity_data_to_context",
    "get_hashed_percentage_for_object_ids",
    "EnvironmentModel",
    "FeatureStateModel",
    "IdentityModel",
    "SegmentModel",
    "TraitModel",
    "EnvironmentState",
    "EnvironmentSnapshot",
    "EnvironmentFetcher",
    "HttpEnvironmentFetcher",
    "FileEnvironmentFetcher",
    "read_environment_from_file",
    "EnvironmentRefresher",
    "EventStream",
    "HttpEventStream",
    "RealtimeListener",
    "Backoff",
    "FlagEngineError",
    "FlagEngineErrorCodes",
    "new_logger",
]
