"""Strip gateway auth material from environments handed to child processes."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

SENSITIVE_GATEWAY_ENV_KEYS: tuple[str, ...] = (
    "TRUSTGATE_GATEWAY_TOKEN",
    "TRUSTGATE_GATEWAY_PASSWORD",
)


def scrub_inherited_sensitive_env(
    env: Mapping[str, str],
    keep_if_provided: Mapping[str, str] | None = None,
    keys: Iterable[str] = SENSITIVE_GATEWAY_ENV_KEYS,
) -> dict[str, str]:
    """Return a copy of *env* without inherited gateway secrets.

    Keys present in *keep_if_provided* were set deliberately by the caller and
    survive with the caller's value.
    """
    scrubbed = dict(env)
    explicit = keep_if_provided or {}
    for key in keys:
        if key in explicit:
            scrubbed[key] = explicit[key]
        else:
            scrubbed.pop(key, None)
    return scrubbed
