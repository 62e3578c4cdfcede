"""Desired gateway state.

Gateway and topology configs are line-oriented ``KEY=VALUE`` files::

    # gateway.conf
    ZT_NETWORK_ID=a1b2c3d4e5f6a7b8
    PHY_IFACE=eth0
    PHY_SUBNET="192.168.1.0/24"

Topology files use the same syntax plus ``type`` (or ``topology.type``)
and repeated ``network`` lines; the first network is the hub.
"""

import re
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Optional

from ztgw.core.exceptions import ConfigError, ValidationError
from ztgw.core.output import console
from ztgw.core.validation import validate_cidr, validate_interface_name, validate_network_id


class TopologyRole(str, Enum):
    STANDALONE = "standalone"
    HUB = "hub"
    SPOKE = "spoke"


class TopologyType(str, Enum):
    HUB_SPOKE = "hub-spoke"
    MESH = "mesh"
    MULTI_SITE = "multi-site"
    CUSTOM = "custom"


# Accepted spellings, matched case-insensitively
GATEWAY_KEYS = {
    "zt_network_id": "network_id",
    "network_id": "network_id",
    "phy_iface": "phy_iface",
    "phy_subnet": "phy_subnet",
    "enable_ipv6": "ipv6",
    "zt_iface": "zt_iface",
    "topology_role": "role",
}
TOPOLOGY_KEYS = {
    "type": "type",
    "topology.type": "type",
    "network": "network",
}

# Whitespace then '#' starts a comment in an unquoted value
INLINE_COMMENT = re.compile(r"\s#")

TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
FALSE_VALUES = frozenset({"", "0", "false", "no", "off"})


@dataclass(frozen=True)
class DesiredState:
    """What the host should look like after reconciliation."""
    network_id: str
    phy_iface: Optional[str] = None
    phy_subnet: Optional[str] = None
    ipv6: bool = False
    role: TopologyRole = TopologyRole.STANDALONE
    zt_iface: Optional[str] = None

    def with_host_defaults(
        self,
        phy_iface: Optional[str] = None,
        phy_subnet: Optional[str] = None,
    ) -> "DesiredState":
        """Fill unset physical-side fields with values discovered on the host."""
        return replace(
            self,
            phy_iface=self.phy_iface or phy_iface,
            phy_subnet=self.phy_subnet or phy_subnet,
        )


@dataclass(frozen=True)
class TopologyConfig:
    """A multi-network topology file."""
    type: Optional[TopologyType]
    networks: tuple[str, ...]
    phy_iface: Optional[str] = None
    phy_subnet: Optional[str] = None
    ipv6: bool = False

    @property
    def hub(self) -> Optional[str]:
        return self.networks[0] if self.networks else None

    @property
    def spokes(self) -> tuple[str, ...]:
        return self.networks[1:]

    def desired_states(self) -> list[DesiredState]:
        """One DesiredState per network, hub first for hub-spoke layouts."""
        states = []
        for index, network_id in enumerate(self.networks):
            if self.type == TopologyType.HUB_SPOKE:
                role = TopologyRole.HUB if index == 0 else TopologyRole.SPOKE
            else:
                role = TopologyRole.STANDALONE
            states.append(DesiredState(
                network_id=network_id,
                phy_iface=self.phy_iface,
                phy_subnet=self.phy_subnet,
                ipv6=self.ipv6,
                role=role,
            ))
        return states


def _split_value(value: str) -> str:
    """Value without surrounding quotes or a trailing ``# comment``."""
    if value[:1] in ("'", '"'):
        end = value.find(value[0], 1)
        if end != -1:
            rest = value[end + 1:].strip()
            if not rest or rest.startswith("#"):
                return value[1:end]
        return value
    return INLINE_COMMENT.split(value, maxsplit=1)[0].rstrip()


def parse_key_values(text: str, source: str = "<config>") -> list[tuple[int, str, str]]:
    """Parse KEY=VALUE lines into (line number, lowercased key, value).

    Comments, blank lines and a leading ``export`` are ignored; surrounding
    quotes are stripped. Repeated keys are all returned, in order.

    Raises:
        ConfigError: On a non-blank line without ``=``
    """
    entries = []
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()

        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ConfigError(
                f"Malformed line {lineno} in {source}: {raw.strip()}",
                hint="Each setting must look like KEY=VALUE",
            )

        entries.append((lineno, key.lower(), _split_value(value.strip())))
    return entries


def _parse_bool(key: str, value: str, source: str) -> bool:
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ConfigError(
        f"Invalid boolean for {key} in {source}: '{value}'",
        hint="Use true/false, yes/no or 1/0",
    )


def _check_network_id(value: str, source: str) -> str:
    try:
        return validate_network_id(value)
    except ValidationError as e:
        raise ConfigError(e.message, hint=e.hint, details=[f"Source: {source}"]) from e


def _check_subnet(value: str, source: str) -> str:
    try:
        return validate_cidr(value)
    except ValidationError as e:
        raise ConfigError(
            f"Malformed PHY_SUBNET: {e.message}",
            hint=e.hint,
            details=[f"Source: {source}"] + e.details,
        ) from e


def _check_iface(key: str, value: str, source: str, allow_wildcard: bool = False) -> str:
    try:
        return validate_interface_name(value, allow_wildcard=allow_wildcard)
    except ValidationError as e:
        raise ConfigError(f"{key}: {e.message}", hint=e.hint, details=[f"Source: {source}"]) from e


def _check_role(value: str, source: str) -> TopologyRole:
    try:
        return TopologyRole(value.strip().lower())
    except ValueError:
        raise ConfigError(
            f"Invalid TOPOLOGY_ROLE in {source}: '{value}'",
            hint=f"Use one of: {', '.join(r.value for r in TopologyRole)}",
        )


def _collect(
    entries: list[tuple[int, str, str]],
    known: dict[str, str],
    source: str,
) -> dict[str, str]:
    values: dict[str, str] = {}
    for lineno, key, value in entries:
        field_name = known.get(key)
        if field_name is None:
            console.warn(f"Ignoring unknown key '{key}' at {source}:{lineno}")
            continue
        values[field_name] = value
    return values


def loads(
    text: str,
    source: str = "<config>",
    *,
    network_id: Optional[str] = None,
    phy_iface: Optional[str] = None,
    phy_subnet: Optional[str] = None,
    ipv6: Optional[bool] = None,
) -> DesiredState:
    """Parse gateway config text into a DesiredState.

    Keyword arguments override values from the text (CLI flags win).

    Raises:
        ConfigError: Missing or malformed ZT_NETWORK_ID, malformed subnet,
            or otherwise invalid values
    """
    known = {**GATEWAY_KEYS, **TOPOLOGY_KEYS}
    values = _collect(parse_key_values(text, source), known, source)
    values.pop("type", None)
    values.pop("network", None)

    if network_id is not None:
        values["network_id"] = network_id
    if phy_iface is not None:
        values["phy_iface"] = phy_iface
    if phy_subnet is not None:
        values["phy_subnet"] = phy_subnet

    raw_id = values.get("network_id", "").strip()
    if not raw_id:
        raise ConfigError(
            f"ZT_NETWORK_ID is not set in {source}",
            hint="Add ZT_NETWORK_ID=<16 hex characters> or pass -n NETWORK_ID",
        )

    enable_ipv6 = _parse_bool("ENABLE_IPV6", values.get("ipv6", ""), source)
    if ipv6 is not None:
        enable_ipv6 = ipv6

    return DesiredState(
        network_id=_check_network_id(raw_id, source),
        phy_iface=_check_iface("PHY_IFACE", values["phy_iface"], source) if values.get("phy_iface") else None,
        phy_subnet=_check_subnet(values["phy_subnet"], source) if values.get("phy_subnet") else None,
        ipv6=enable_ipv6,
        role=_check_role(values["role"], source) if values.get("role") else TopologyRole.STANDALONE,
        zt_iface=_check_iface("ZT_IFACE", values["zt_iface"], source, allow_wildcard=True) if values.get("zt_iface") else None,
    )


def load(source: Optional[Path] = None, **overrides: Optional[object]) -> DesiredState:
    """Load a DesiredState from a file, from CLI overrides, or both.

    Raises:
        ConfigError: If the file cannot be read or its values are invalid
    """
    text = ""
    name = "command line"
    if source is not None:
        text = _read(source)
        name = str(source)
    return loads(text, name, **overrides)  # type: ignore[arg-type]


def loads_topology(text: str, source: str = "<topology>") -> TopologyConfig:
    """Parse topology config text.

    Raises:
        ConfigError: Unknown topology type or malformed network id
    """
    entries = parse_key_values(text, source)
    known = {**GATEWAY_KEYS, **TOPOLOGY_KEYS}

    networks: list[str] = []
    scalar_entries = []
    for lineno, key, value in entries:
        if key == "network":
            networks.append(_check_network_id(value, f"{source}:{lineno}"))
        else:
            scalar_entries.append((lineno, key, value))
    values = _collect(scalar_entries, known, source)

    topology_type = None
    raw_type = values.get("type", "").strip().lower()
    if raw_type:
        try:
            topology_type = TopologyType(raw_type)
        except ValueError:
            raise ConfigError(
                f"Unknown topology type in {source}: '{raw_type}'",
                hint=f"Use one of: {', '.join(t.value for t in TopologyType)}",
            )

    # A single-gateway key is accepted as one more network
    if values.get("network_id"):
        network_id = _check_network_id(values["network_id"], source)
        if network_id not in networks:
            networks.append(network_id)

    return TopologyConfig(
        type=topology_type,
        networks=tuple(networks),
        phy_iface=_check_iface("PHY_IFACE", values["phy_iface"], source) if values.get("phy_iface") else None,
        phy_subnet=_check_subnet(values["phy_subnet"], source) if values.get("phy_subnet") else None,
        ipv6=_parse_bool("ENABLE_IPV6", values.get("ipv6", ""), source),
    )


def load_topology(source: Path) -> TopologyConfig:
    return loads_topology(_read(source), str(source))


def _read(path: Path) -> str:
    try:
        return path.read_text()
    except FileNotFoundError:
        raise ConfigError(
            f"Config file not found: {path}",
            hint="Check the path passed with -c",
        )
    except PermissionError:
        raise ConfigError(
            f"Cannot read config file: {path}",
            hint="Check file permissions or run with sudo",
        )
    except UnicodeDecodeError as e:
        raise ConfigError(f"Config file is not valid text: {path}", details=[str(e)]) from e
