"""
Retry Coordinator - per-operation-type retry and backoff policy.

Delay before retry n (1-based):
    base_backoff * backoff_multiplier ** (n - 1) * (1 +/- jitter)

With the defaults that is roughly 0.5s, 1s, 2s. Errors that are not
retryable (validation failures, insufficient funds, unsupported types...)
fail on the first attempt whatever the policy says.
"""

import logging
import random
from dataclasses import dataclass, field, replace
from typing import Any

from intentflow.errors import NEVER_RETRY_KINDS, RETRYABLE_KINDS, ErrorKind, OperationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry behaviour for one operation type."""

    max_retries: int = 3
    base_backoff: float = 0.5  # seconds
    backoff_multiplier: float = 2.0
    jitter: float = 0.2  # +/- fraction of the delay
    retryable_error_kinds: frozenset[ErrorKind] = field(default=RETRYABLE_KINDS)

    @classmethod
    def from_dict(cls, data: dict[str, Any], base: "RetryPolicy | None" = None) -> "RetryPolicy":
        """Build a policy from config, falling back to ``base`` for missing keys."""
        base = base or cls()
        kinds = data.get("retryable_error_kinds")
        return replace(
            base,
            max_retries=int(data.get("max_retries", base.max_retries)),
            base_backoff=float(data.get("base_backoff", base.base_backoff)),
            backoff_multiplier=float(data.get("backoff_multiplier", base.backoff_multiplier)),
            jitter=float(data.get("jitter", base.jitter)),
            retryable_error_kinds=(
                frozenset(ErrorKind(k) for k in kinds)
                if kinds is not None
                else base.retryable_error_kinds
            ),
        )


class RetryCoordinator:
    """
    Decides whether a failed attempt is retried, and after how long.

    Example:
        retries = RetryCoordinator(
            default_policy=RetryPolicy(),
            policies={"token_trade": RetryPolicy(max_retries=1)},
        )
        if retries.should_retry("token_trade", error, attempts=1):
            delay = retries.backoff_delay("token_trade", attempts=1)
    """

    def __init__(
        self,
        default_policy: RetryPolicy | None = None,
        policies: dict[str, RetryPolicy] | None = None,
        rng: random.Random | None = None,
    ):
        self.default_policy = default_policy or RetryPolicy()
        self._policies: dict[str, RetryPolicy] = dict(policies or {})
        self._rng = rng or random.Random()

    def set_policy(self, intent_type: str, policy: RetryPolicy) -> None:
        self._policies[intent_type] = policy

    def policy_for(self, intent_type: str) -> RetryPolicy:
        return self._policies.get(intent_type, self.default_policy)

    def should_retry(self, intent_type: str, error: OperationError, attempts: int) -> bool:
        """
        Args:
            intent_type: Node type, selects the policy
            error: Failure from the latest attempt
            attempts: Attempts made so far, including the failed one
        """
        if not error.retryable or error.kind in NEVER_RETRY_KINDS:
            return False
        policy = self.policy_for(intent_type)
        if error.kind not in policy.retryable_error_kinds:
            return False
        return attempts <= policy.max_retries

    def backoff_delay(self, intent_type: str, attempts: int) -> float:
        """Seconds to wait before the next attempt.

        Args:
            attempts: Attempts made so far (1 after the first failure)
        """
        policy = self.policy_for(intent_type)
        delay = policy.base_backoff * policy.backoff_multiplier ** (attempts - 1)
        if policy.jitter:
            delay *= 1 + self._rng.uniform(-policy.jitter, policy.jitter)
        return max(0.0, delay)
