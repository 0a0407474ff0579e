"""Assemble validated connection configurations from raw form fields."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Union

from pydantic import ValidationError as PydanticValidationError

from keynav.errors import ValidationError

from . import codec
from .models import (
    CONNECTION_MODES,
    ClusterConfig,
    ConnectionConfig,
    ConnectionFields,
    SentinelConfig,
    StandaloneConfig,
)

LOGGER = logging.getLogger(__name__)


def split_addresses(raw: str) -> list[str]:
    """Split a newline-delimited address field, trimming lines and dropping blanks."""
    return [line.strip() for line in raw.splitlines() if line.strip()]


def _coerce_fields(raw: Mapping[str, str]) -> ConnectionFields:
    try:
        return ConnectionFields(**{key: value or "" for key, value in raw.items()})
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        raise ValidationError(f"invalid connection fields: {problems}") from exc


class ConnectionConfigBuilder:
    """Build topology configurations, embedding the shared password in every address."""

    def build(
        self,
        mode: str,
        fields: Union[ConnectionFields, Mapping[str, str]],
    ) -> ConnectionConfig:
        """Validate ``fields`` for ``mode`` and return the resulting configuration.

        Args:
            mode: One of ``standalone``, ``cluster`` or ``sentinel``.
            fields: Raw form values; mappings are coerced into ``ConnectionFields``.

        Returns:
            ConnectionConfig: Configuration whose addresses carry the shared password.

        Raises:
            ValidationError: If a field is unknown, a required field is empty or the
                mode is unknown.
        """
        if not isinstance(fields, ConnectionFields):
            fields = _coerce_fields(fields)
        password = fields.password

        if mode == "standalone":
            address = fields.address.strip()
            if not address:
                raise ValidationError("missing address")
            return StandaloneConfig(address=codec.inject(address, password))

        if mode == "cluster":
            seeds = split_addresses(fields.seeds)
            if not seeds:
                raise ValidationError("no seed nodes")
            return ClusterConfig(seeds=self._inject_all(seeds, password))

        if mode == "sentinel":
            master_name = fields.master_name.strip()
            if not master_name:
                raise ValidationError("missing master name")
            sentinels = split_addresses(fields.sentinels)
            if not sentinels:
                raise ValidationError("no sentinel nodes")
            return SentinelConfig(
                master_name=master_name,
                sentinels=self._inject_all(sentinels, password),
            )

        raise ValidationError(
            f"unknown connection mode '{mode}' (expected one of {', '.join(CONNECTION_MODES)})"
        )

    @staticmethod
    def _inject_all(addresses: Iterable[str], password: str) -> list[str]:
        return [codec.inject(address, password) for address in addresses]


def decompose(config: ConnectionConfig) -> tuple[str, ConnectionFields]:
    """Split a stored configuration back into editable form fields.

    Credentials are stripped from every address. The recovered shared password
    is the last one found, since all addresses of a mode carry the same secret.

    Args:
        config: Stored configuration.

    Returns:
        tuple[str, ConnectionFields]: The connection mode and its form fields.
    """
    password = ""

    def _strip(address: str) -> str:
        nonlocal password
        parsed = codec.parse(address)
        if parsed.password:
            password = parsed.password
        return parsed.address

    if isinstance(config, StandaloneConfig):
        fields = ConnectionFields(address=_strip(config.address))
    elif isinstance(config, ClusterConfig):
        fields = ConnectionFields(seeds="\n".join(_strip(seed) for seed in config.seeds))
    else:
        fields = ConnectionFields(
            master_name=config.master_name,
            sentinels="\n".join(_strip(sentinel) for sentinel in config.sentinels),
        )
    return config.mode, fields.model_copy(update={"password": password})


__all__ = ["ConnectionConfigBuilder", "decompose", "split_addresses"]
