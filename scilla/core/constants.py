"""Common constants shared across the shell."""

from __future__ import annotations

from pathlib import Path

LAMPORTS_PER_SOL = 1_000_000_000

SCILLA_CONFIG_RELATIVE_PATH = Path(".config/scilla.toml")
DEFAULT_KEYPAIR_PATH = Path(".config/solana/id.json")

MAINNET_RPC = "https://api.mainnet-beta.solana.com"
DEVNET_RPC = "https://api.devnet.solana.com"
TESTNET_RPC = "https://api.testnet.solana.com"
LOCALNET_RPC = "http://127.0.0.1:8899"

CLUSTER_MONIKERS = {
    "mainnet": MAINNET_RPC,
    "mainnet-beta": MAINNET_RPC,
    "devnet": DEVNET_RPC,
    "testnet": TESTNET_RPC,
    "localnet": LOCALNET_RPC,
    "localhost": LOCALNET_RPC,
}

# Hosts that can only reach a test cluster.
TEST_CLUSTER_HOSTS = frozenset(
    {"api.devnet.solana.com", "api.testnet.solana.com", "127.0.0.1", "localhost", "::1"}
)

MAINNET_GENESIS_HASH = "5eykt4UsFv8P8NJdTREpY1vzqKqZKvdpKuc147dw2N9d"
DEVNET_GENESIS_HASH = "EtWTRABZaYq6iMfeYKouRu166VU2xqa1wcaWoxPkrZBG"
TESTNET_GENESIS_HASH = "4uhcVJyU9pJkvQyS88uRDiswHXSCkY3zQawwpjk2NsNY"

# u64::MAX marks a delegation that has not been deactivated.
ACTIVE_STAKE_EPOCH_BOUND = 2**64 - 1

STAKE_PROGRAM_ID = "Stake11111111111111111111111111111111111111"
STAKE_CONFIG_ID = "StakeConfig11111111111111111111111111111111"
VOTE_PROGRAM_ID = "Vote111111111111111111111111111111111111111"
MEMO_PROGRAM_ID = "MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr"

STAKE_STATE_SPACE = 200
VOTE_STATE_SPACE = 3762

# Memo payloads above this size risk exceeding the 1232 byte packet limit.
MEMO_CHUNK_SIZE = 900

BPF_LOADER_UPGRADEABLE_ID = "BPFLoaderUpgradeab1e11111111111111111111111"

# Upgradeable loader account headers: buffer (tag, authority option),
# program (tag, programdata address), programdata (tag, slot, authority option).
LOADER_BUFFER_METADATA_SIZE = 37
LOADER_PROGRAM_SIZE = 36
LOADER_PROGRAMDATA_METADATA_SIZE = 45

# Program bytes per loader Write, keeping each transaction under the packet limit.
PROGRAM_WRITE_CHUNK_SIZE = 900
