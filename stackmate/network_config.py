# network_config.py
"""
Stackmate – Networks
====================

The two supported Stacks networks, their indexer/explorer base URLs and a
few display helpers. Dev-proxy rewriting lives here and nowhere else.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Union

from .configuration import Configuration

MICROSTX = 1_000_000


class NetworkName(str, enum.Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"


@dataclass(frozen=True, slots=True)
class NetworkConfig:
    name: NetworkName
    api_base_url: str
    explorer_base_url: str
    address_prefix: str
    proxy_path: str


NETWORKS = {
    NetworkName.MAINNET: NetworkConfig(
        NetworkName.MAINNET,
        "https://api.hiro.so",
        "https://explorer.hiro.so",
        address_prefix="SP",
        proxy_path="/hiro-mainnet",
    ),
    NetworkName.TESTNET: NetworkConfig(
        NetworkName.TESTNET,
        "https://api.testnet.hiro.so",
        "https://explorer.hiro.so/testnet",
        address_prefix="ST",
        proxy_path="/hiro",
    ),
}


def parse_network(value: Union[str, NetworkName]) -> NetworkName:
    if isinstance(value, NetworkName):
        return value
    try:
        return NetworkName(str(value).strip().lower())
    except ValueError:
        raise ValueError(f"Unknown network '{value}' (expected mainnet or testnet)") from None


def get_api_base_url(
    network: Union[str, NetworkName], configuration: Optional[Configuration] = None
) -> str:
    """Indexer base URL, routed through the local dev proxy when DEV_MODE is on."""
    net = NETWORKS[parse_network(network)]
    if configuration is None:
        return net.api_base_url
    if configuration.get_config_value("DEV_MODE", False):
        proxy = str(configuration.get_config_value("DEV_PROXY_URL", "")).rstrip("/")
        return f"{proxy}{net.proxy_path}"
    key = f"API_URL_{net.name.value.upper()}"
    return str(configuration.get_config_value(key, net.api_base_url)).rstrip("/")


def get_explorer_base_url(
    network: Union[str, NetworkName], configuration: Optional[Configuration] = None
) -> str:
    net = NETWORKS[parse_network(network)]
    if configuration is None:
        return net.explorer_base_url
    key = f"EXPLORER_URL_{net.name.value.upper()}"
    return str(configuration.get_config_value(key, net.explorer_base_url)).rstrip("/")


def explorer_tx_url(
    network: Union[str, NetworkName],
    tx_id: Optional[str],
    configuration: Optional[Configuration] = None,
) -> str:
    if not tx_id:
        return ""
    return f"{get_explorer_base_url(network, configuration)}/txid/{tx_id}?chain=stacks"


def explorer_address_url(
    network: Union[str, NetworkName],
    address: str,
    configuration: Optional[Configuration] = None,
) -> str:
    return f"{get_explorer_base_url(network, configuration)}/address/{address}?chain=stacks"


def micro_to_stx(micro: Union[int, str]) -> str:
    """Render a micro-STX amount as STX without float rounding."""
    value = int(micro)
    sign = "-" if value < 0 else ""
    whole, frac = divmod(abs(value), MICROSTX)
    frac_str = str(frac).rjust(6, "0").rstrip("0")
    return f"{sign}{whole}.{frac_str}" if frac_str else f"{sign}{whole}"


def truncate_middle(text: str, front: int = 6, back: int = 4) -> str:
    if len(text) <= front + back + 3:
        return text
    return f"{text[:front]}…{text[-back:]}"
