"""Extension configuration read from ``STEADYBIT_EXTENSION_*`` environment variables."""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from typing import Any

logger = logging.getLogger(__name__)

ENV_PREFIX = "STEADYBIT_EXTENSION_"

_TRUE_WORDS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_WORDS = frozenset({"0", "f", "F", "FALSE", "false", "False"})
_OCTAL = re.compile(r"[+-]?0[0-7]+")


class ConfigurationError(ValueError):
    """Raised when the environment holds an invalid or incomplete configuration."""


def _parse_bool(value: str) -> bool:
    if value in _TRUE_WORDS:
        return True
    if value in _FALSE_WORDS:
        return False
    raise ValueError(f"invalid boolean {value!r}")


def _parse_int(value: str) -> int:
    try:
        return int(value, 0)
    except ValueError:
        if _OCTAL.fullmatch(value):
            return int(value, 8)
        raise


def _parse_list(value: str) -> tuple[str, ...]:
    if not value.strip():
        return ()
    return tuple(value.split(","))


def _setting(
    env: str,
    parse: Callable[[str], Any],
    default: Any,
    *,
    env_default: str | None = None,
    required: bool = False,
) -> Any:
    return field(
        default=default,
        metadata={
            "env": env,
            "parse": parse,
            "env_default": env_default,
            "required": required,
        },
    )


@dataclass(frozen=True)
class Specification:
    """All settings of the extension."""

    cluster_name: str = _setting("CLUSTER_NAME", str, "", required=True)
    label_filter: tuple[str, ...] = _setting(
        "LABEL_FILTER",
        _parse_list,
        ("controller-revision-hash", "pod-template-generation", "pod-template-hash"),
        env_default="controller-revision-hash,pod-template-generation,pod-template-hash",
    )
    active_advice_list: tuple[str, ...] = _setting(
        "ACTIVE_ADVICE_LIST", _parse_list, ("*",), env_default="*"
    )
    advice_single_replica_min_replicas: int = _setting(
        "ADVICE_SINGLE_REPLICA_MIN_REPLICAS", _parse_int, 2, env_default="2"
    )
    disable_discovery_excludes: bool = _setting(
        "DISABLE_DISCOVERY_EXCLUDES", _parse_bool, False, env_default="false"
    )
    log_kubernetes_http_requests: bool = _setting(
        "LOG_KUBERNETES_HTTP_REQUESTS", _parse_bool, False, env_default="false"
    )
    discovery_disabled_container: bool = _setting(
        "DISCOVERY_DISABLED_CONTAINER", _parse_bool, False, env_default="false"
    )
    discovery_disabled_deployment: bool = _setting(
        "DISCOVERY_DISABLED_DEPLOYMENT", _parse_bool, False, env_default="false"
    )
    discovery_disabled_statefulset: bool = _setting(
        "DISCOVERY_DISABLED_STATEFUL_SET", _parse_bool, False, env_default="false"
    )
    discovery_disabled_daemonset: bool = _setting(
        "DISCOVERY_DISABLED_DAEMON_SET", _parse_bool, False, env_default="false"
    )
    discovery_disabled_pod: bool = _setting(
        "DISCOVERY_DISABLED_POD", _parse_bool, False, env_default="false"
    )
    discovery_disabled_node: bool = _setting(
        "DISCOVERY_DISABLED_NODE", _parse_bool, False, env_default="false"
    )
    discovery_disabled_cluster: bool = _setting(
        "DISCOVERY_DISABLED_CLUSTER", _parse_bool, False, env_default="false"
    )
    discovery_disabled_ingress: bool = _setting(
        "DISCOVERY_DISABLED_INGRESS", _parse_bool, False, env_default="false"
    )
    discovery_attributes_excludes_container: tuple[str, ...] = _setting(
        "DISCOVERY_ATTRIBUTES_EXCLUDES_CONTAINER", _parse_list, ()
    )
    discovery_attributes_excludes_deployment: tuple[str, ...] = _setting(
        "DISCOVERY_ATTRIBUTES_EXCLUDES_DEPLOYMENT", _parse_list, ()
    )
    discovery_attributes_excludes_statefulset: tuple[str, ...] = _setting(
        "DISCOVERY_ATTRIBUTES_EXCLUDES_STATEFUL_SET", _parse_list, ()
    )
    discovery_attributes_excludes_daemonset: tuple[str, ...] = _setting(
        "DISCOVERY_ATTRIBUTES_EXCLUDES_DAEMON_SET", _parse_list, ()
    )
    discovery_attributes_excludes_pod: tuple[str, ...] = _setting(
        "DISCOVERY_ATTRIBUTES_EXCLUDES_POD", _parse_list, ()
    )
    discovery_attributes_excludes_node: tuple[str, ...] = _setting(
        "DISCOVERY_ATTRIBUTES_EXCLUDES_NODE", _parse_list, ()
    )
    discovery_attributes_excludes_ingress: tuple[str, ...] = _setting(
        "DISCOVERY_ATTRIBUTES_EXCLUDES_INGRESS", _parse_list, ()
    )
    discovery_max_pod_count: int = _setting(
        "DISCOVERY_MAX_POD_COUNT", _parse_int, 50, env_default="50"
    )
    namespace: str = _setting("NAMESPACE", str, "")

    @classmethod
    def from_environ(cls, environ: Mapping[str, str] | None = None) -> Specification:
        """Build a specification from environment variables.

        A variable that is set, even to an empty string, overrides the default.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for spec_field in fields(cls):
            meta = spec_field.metadata
            key = ENV_PREFIX + meta["env"]
            if key in env:
                raw = env[key]
            elif meta["env_default"] is not None:
                raw = meta["env_default"]
            else:
                if meta["required"]:
                    raise ConfigurationError(
                        f"required key {key} missing value"
                    )
                continue
            try:
                values[spec_field.name] = meta["parse"](raw)
            except ValueError as exc:
                raise ConfigurationError(
                    f"assigning {key} to {spec_field.name}: "
                    f"converting {raw!r}: {exc}"
                ) from exc
        return cls(**values)

    def uses_role_based_access_control(self) -> bool:
        """True when the extension is restricted to a single namespace."""
        return self.namespace != ""


def load_configuration(environ: Mapping[str, str] | None = None) -> Specification:
    """Read the configuration, raising ConfigurationError when it is invalid."""
    return Specification.from_environ(environ)


def validate_configuration(config: Specification) -> None:
    """Log notable settings of a loaded configuration."""
    if config.disable_discovery_excludes:
        logger.info(
            "Discovery excludes are disabled. Will also discover workloads "
            "labeled with steadybit.com/discovery-disabled=true."
        )