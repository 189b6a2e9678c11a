import pytest

from stackmate.configuration import Configuration
from stackmate.network_config import (
    NetworkName,
    explorer_address_url,
    explorer_tx_url,
    get_api_base_url,
    micro_to_stx,
    parse_network,
    truncate_middle,
)


def test_parse_network():
    assert parse_network("Mainnet") is NetworkName.MAINNET
    assert parse_network(NetworkName.TESTNET) is NetworkName.TESTNET
    with pytest.raises(ValueError):
        parse_network("devnet")


def test_api_base_url_direct_and_proxied():
    direct = Configuration(env_path="missing.env", yaml_file="missing.yaml", DEV_MODE=False)
    proxied = Configuration(
        env_path="missing.env", yaml_file="missing.yaml", DEV_MODE=True, DEV_PROXY_URL="http://localhost:3000/"
    )

    assert get_api_base_url("mainnet") == "https://api.hiro.so"
    assert get_api_base_url("testnet", direct) == "https://api.testnet.hiro.so"
    assert get_api_base_url("testnet", proxied) == "http://localhost:3000/hiro"
    assert get_api_base_url("mainnet", proxied) == "http://localhost:3000/hiro-mainnet"


def test_explorer_urls():
    assert explorer_tx_url("mainnet", "0xabc") == "https://explorer.hiro.so/txid/0xabc?chain=stacks"
    assert explorer_tx_url("testnet", "0xabc") == "https://explorer.hiro.so/testnet/txid/0xabc?chain=stacks"
    assert explorer_tx_url("testnet", None) == ""
    assert explorer_address_url("mainnet", "SP1") == "https://explorer.hiro.so/address/SP1?chain=stacks"


def test_micro_to_stx():
    assert micro_to_stx("1500000") == "1.5"
    assert micro_to_stx(0) == "0"
    assert micro_to_stx(1) == "0.000001"


def test_truncate_middle():
    assert truncate_middle("SP2J6ZY48GV1EZ5V2V5RB9MP66SW86PYKKNRV9EJ7") == "SP2J6Z…9EJ7"
    assert truncate_middle("0xabcdef0123") == "0xabcdef0123"
