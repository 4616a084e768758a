"""
Resilience helpers

Bounded retries with backoff, shared by the load balancer client and
metric evaluation.
"""

from .retry import (
    AWS_THROTTLING_RETRY_CONFIG,
    ConstantBackoff,
    ExponentialBackoff,
    LinearBackoff,
    RetryConfig,
    RetryError,
    RetryManager,
    RetryStrategy,
    aws_error_code,
    is_transient_aws_error,
)

__all__ = [
    "AWS_THROTTLING_RETRY_CONFIG",
    "ConstantBackoff",
    "ExponentialBackoff",
    "LinearBackoff",
    "RetryConfig",
    "RetryError",
    "RetryManager",
    "RetryStrategy",
    "aws_error_code",
    "is_transient_aws_error",
]
