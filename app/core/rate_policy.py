"""Route classification and rate policies.

A request path is mapped to one named policy by checking ordered prefix
rules; the first matching rule wins and the default policy catches the rest.
Numeric thresholds come from settings, never from this module.
"""

from __future__ import annotations

from dataclasses import dataclass

from app.core.config import RateLimitSettings
from app.core.errors import ConfigurationAppError

SENSITIVE = "sensitive"
AUTH = "auth"
DEFAULT = "default"


@dataclass(frozen=True)
class RatePolicy:
    """Request ceiling for one route class.

    Attributes:
        name: Policy name (e.g., "sensitive").
        max_requests: Requests admitted per window.
        window_ms: Window length in milliseconds.
    """

    name: str
    max_requests: int
    window_ms: int

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ConfigurationAppError(
                code="invalid_rate_policy",
                message=f"Policy '{self.name}' must allow at least one request per window",
                details={"policy": self.name, "min_value": 1, "actual_value": self.max_requests},
            )
        if self.window_ms < 1:
            raise ConfigurationAppError(
                code="invalid_rate_policy",
                message=f"Policy '{self.name}' must have a positive window length",
                details={"policy": self.name, "min_value": 1, "actual_value": self.window_ms},
            )


@dataclass(frozen=True)
class PolicyRule:
    """Path prefixes routed to a policy.

    A prefix ending in "/" matches anything below it. Otherwise it matches the
    exact path or its sub-paths, so "/login" covers "/login/x" but not
    "/loginfo".
    """

    policy: RatePolicy
    prefixes: tuple[str, ...]

    def matches(self, path: str) -> bool:
        return any(_path_matches(path, prefix) for prefix in self.prefixes)


def _path_matches(path: str, prefix: str) -> bool:
    if prefix.endswith("/"):
        return path.startswith(prefix)
    return path == prefix or path.startswith(prefix + "/")


class RatePolicyResolver:
    """Resolve a request path to the rate policy that governs it.

    Rules are checked in the order given; ``default`` applies when no rule
    matches, so resolution is total and has no side effects.
    """

    def __init__(self, rules: list[PolicyRule], default: RatePolicy) -> None:
        names = [rule.policy.name for rule in rules] + [default.name]
        if len(set(names)) != len(names):
            raise ConfigurationAppError(
                code="duplicate_rate_policy",
                message="Rate policy names must be unique",
                details={"context": {"policies": names}},
            )
        for rule in rules:
            if not rule.prefixes or any(not prefix for prefix in rule.prefixes):
                raise ConfigurationAppError(
                    code="invalid_rate_policy",
                    message=f"Policy '{rule.policy.name}' needs non-empty path prefixes",
                    details={"policy": rule.policy.name},
                )

        self._rules = tuple(rules)
        self._default = default

    @property
    def policies(self) -> tuple[RatePolicy, ...]:
        return tuple(rule.policy for rule in self._rules) + (self._default,)

    def resolve(self, path: str) -> RatePolicy:
        for rule in self._rules:
            if rule.matches(path):
                return rule.policy
        return self._default


def _split_prefixes(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def build_policy_resolver(cfg: RateLimitSettings) -> RatePolicyResolver:
    """Build the sensitive -> auth -> default resolver from settings.

    Args:
        cfg: Rate limit settings.

    Returns:
        RatePolicyResolver: Resolver with validated policies.

    Raises:
        ConfigurationAppError: If any policy is malformed.
    """

    sensitive = RatePolicy(SENSITIVE, cfg.sensitive_max_requests, cfg.sensitive_window_ms)
    auth = RatePolicy(AUTH, cfg.auth_max_requests, cfg.auth_window_ms)
    default = RatePolicy(DEFAULT, cfg.default_max_requests, cfg.default_window_ms)

    return RatePolicyResolver(
        rules=[
            PolicyRule(sensitive, _split_prefixes(cfg.sensitive_prefixes)),
            PolicyRule(auth, _split_prefixes(cfg.auth_prefixes)),
        ],
        default=default,
    )
