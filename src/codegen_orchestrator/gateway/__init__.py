"""Multi-provider language model gateway."""

from .balancer import (
	LeastConnectionsStrategy,
	LoadBalancer,
	RoundRobinStrategy,
	SelectionStrategy,
	WeightedStrategy,
	create_strategy,
)
from .base import ChatOptions, LLMResponse, ProviderAdapter, TokenUsage
from .gateway import LLMGateway
from .litellm_provider import LiteLLMProvider
from .retry import RetryPolicy
from .streaming import ChatStream
from .usage import ProviderUsage, UsageTracker

__all__ = [
	"ChatOptions",
	"ChatStream",
	"LLMGateway",
	"LLMResponse",
	"LeastConnectionsStrategy",
	"LiteLLMProvider",
	"LoadBalancer",
	"ProviderAdapter",
	"ProviderUsage",
	"RetryPolicy",
	"RoundRobinStrategy",
	"SelectionStrategy",
	"TokenUsage",
	"UsageTracker",
	"WeightedStrategy",
	"create_strategy",
]
