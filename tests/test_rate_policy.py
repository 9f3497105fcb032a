"""Tests for route classification and policy validation."""

import pytest

from app.core.config import RateLimitSettings
from app.core.errors import ConfigurationAppError
from app.core.rate_policy import (
    AUTH,
    DEFAULT,
    SENSITIVE,
    PolicyRule,
    RatePolicy,
    RatePolicyResolver,
    build_policy_resolver,
)


@pytest.fixture
def resolver() -> RatePolicyResolver:
    return build_policy_resolver(RateLimitSettings())


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("/api/admin/login", SENSITIVE),
        ("/api/admin/coin-management/transactions", SENSITIVE),
        ("/api/push/send", SENSITIVE),
        ("/api/auth/login", AUTH),
        ("/api/auth/signup", AUTH),
        ("/auth/callback", AUTH),
        ("/login", AUTH),
        ("/signup", AUTH),
        ("/login/", AUTH),
        ("/signup/confirm", AUTH),
        ("/loginfo", DEFAULT),
        ("/signup-terms", DEFAULT),
        ("/api/push/send/batch", SENSITIVE),
        ("/api/push/sender", DEFAULT),
        ("/", DEFAULT),
        ("/dashboard/sites", DEFAULT),
        ("/api/sites", DEFAULT),
        ("", DEFAULT),
    ],
)
def test_resolves_path_to_policy(resolver: RatePolicyResolver, path: str, expected: str) -> None:
    assert resolver.resolve(path).name == expected


def test_default_thresholds(resolver: RatePolicyResolver) -> None:
    by_name = {p.name: p for p in resolver.policies}

    assert (by_name[SENSITIVE].max_requests, by_name[SENSITIVE].window_ms) == (10, 60_000)
    assert (by_name[AUTH].max_requests, by_name[AUTH].window_ms) == (5, 60_000)
    assert (by_name[DEFAULT].max_requests, by_name[DEFAULT].window_ms) == (100, 60_000)


def test_resolution_is_idempotent(resolver: RatePolicyResolver) -> None:
    assert resolver.resolve("/api/admin/x") is resolver.resolve("/api/admin/x")


def test_first_matching_rule_wins() -> None:
    broad = RatePolicy("broad", 1, 1_000)
    narrow = RatePolicy("narrow", 2, 1_000)
    resolver = RatePolicyResolver(
        rules=[PolicyRule(broad, ("/api/",)), PolicyRule(narrow, ("/api/admin/",))],
        default=RatePolicy("default", 3, 1_000),
    )

    assert resolver.resolve("/api/admin/users").name == "broad"


def test_prefixes_come_from_settings() -> None:
    cfg = RateLimitSettings(sensitive_prefixes=" /ops/ , /internal ", auth_prefixes="/sso/")
    resolver = build_policy_resolver(cfg)

    assert resolver.resolve("/ops/reindex").name == SENSITIVE
    assert resolver.resolve("/internal").name == SENSITIVE
    assert resolver.resolve("/sso/start").name == AUTH
    assert resolver.resolve("/api/admin/login").name == DEFAULT


@pytest.mark.parametrize(("max_requests", "window_ms"), [(0, 1_000), (-1, 1_000), (1, 0)])
def test_malformed_policy_is_configuration_error(max_requests: int, window_ms: int) -> None:
    with pytest.raises(ConfigurationAppError) as exc_info:
        RatePolicy("sensitive", max_requests, window_ms)

    assert exc_info.value.code == "invalid_rate_policy"


def test_empty_prefix_list_is_configuration_error() -> None:
    with pytest.raises(ConfigurationAppError):
        build_policy_resolver(RateLimitSettings(auth_prefixes=" , "))


def test_duplicate_policy_names_rejected() -> None:
    policy = RatePolicy("same", 1, 1_000)
    with pytest.raises(ConfigurationAppError):
        RatePolicyResolver(rules=[PolicyRule(policy, ("/a",))], default=RatePolicy("same", 2, 1_000))
