"""
Per-user PlayerData contracts.

Every player gets their own PlayerData contract deployed from the backend's
signer account. The username -> contract mapping is kept locally in
userContracts.json.
"""

import json
import logging
import os
import time
from typing import Any, Dict, Optional

from eth_account import Account
from web3 import Web3

from backend_config import Config
from backend_errors import (
    ContractConfigError,
    ContractDeploymentFailure,
    InvalidArgument,
    UserAlreadyExists,
    UserNotFound,
)
from json_store import JsonStore

logger = logging.getLogger(__name__)

DEPLOY_GAS = 3000000
ADMIN_SET_KILLS_GAS = 200000

# Subset of the PlayerData ABI used for reads when the artifact is not at hand
PLAYER_DATA_ABI = [
    {
        "inputs": [{"name": "player", "type": "address"}],
        "name": "getKills",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [{"name": "kills", "type": "uint256"}],
        "name": "setKills",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [],
        "name": "incrementKills",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            {"name": "player", "type": "address"},
            {"name": "kills", "type": "uint256"}
        ],
        "name": "adminSetKills",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]


class ContractManager:
    """Deploys and reads per-user PlayerData contracts"""

    def __init__(self, rpc_url: str, private_key: Optional[str], artifact_path: str,
                 store: JsonStore, w3: Web3 = None):
        self.rpc_url = rpc_url
        self.artifact_path = artifact_path
        self.store = store

        self.w3 = w3 if w3 is not None else Web3(Web3.HTTPProvider(self.rpc_url))

        if private_key:
            self.account = Account.from_key(private_key)
        else:
            self.account = None
            logger.warning("PRIVATE_KEY not set - contract deployment disabled")

    @classmethod
    def from_config(cls, config: Config, w3: Web3 = None) -> 'ContractManager':
        return cls(
            config.rpc_url,
            config.private_key,
            config.artifact_path,
            JsonStore(config.user_contracts_path),
            w3=w3,
        )

    def is_configured(self) -> bool:
        """Check if a signer is available and the RPC endpoint answers"""
        has_account = self.account is not None
        is_connected = self.w3.is_connected()

        logger.debug(
            f"is_configured check: account={has_account}, connected={is_connected}")

        return has_account and is_connected

    def load_artifact(self) -> Dict[str, Any]:
        """Load the compiled Hardhat artifact (abi + bytecode)"""
        if not os.path.exists(self.artifact_path):
            raise ContractConfigError(
                f"Artifact not found at {self.artifact_path}. Run npx hardhat compile first.")
        with open(self.artifact_path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def get_player_record(self, username: str) -> Optional[Dict[str, Any]]:
        return self.store.get(username)

    def _send(self, fn_call, gas: int):
        """Sign, broadcast and wait for a contract transaction"""
        tx = fn_call.build_transaction({
            'from': self.account.address,
            'nonce': self.w3.eth.get_transaction_count(self.account.address),
            'gas': gas,
            'gasPrice': self.w3.eth.gas_price
        })
        signed_tx = self.account.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash)
        return tx_hash, receipt

    def create_contract(self, username: str, address: str) -> str:
        """
        Deploy a PlayerData contract for username and return its address.

        The player's kills are initialised to 0 via adminSetKills before the
        record is persisted.
        """
        if self.account is None:
            raise ContractConfigError("No signer available. Please set PRIVATE_KEY in .env")

        if not isinstance(address, str) or not Web3.is_address(address):
            raise InvalidArgument("Invalid Ethereum address provided.")
        player_address = Web3.to_checksum_address(address)

        if self.store.get(username):
            raise UserAlreadyExists("Username already exists")

        artifact = self.load_artifact()
        deployer = self.account.address
        balance = self.w3.eth.get_balance(deployer)
        logger.info(
            f"Deploying contract for {username} ({player_address}) from {deployer} "
            f"with balance {Web3.from_wei(balance, 'ether')} ETH")

        factory = self.w3.eth.contract(abi=artifact['abi'], bytecode=artifact['bytecode'])
        try:
            tx_hash, receipt = self._send(factory.constructor(), DEPLOY_GAS)
        except Exception as e:
            logger.error(f"Contract deployment for {username} failed: {e}", exc_info=True)
            raise ContractDeploymentFailure(f"Failed to deploy contract: {e}") from e

        contract_address = receipt['contractAddress']
        if not contract_address:
            raise ContractDeploymentFailure(
                f"Deployment receipt has no contract address (tx {tx_hash.hex()})")
        logger.info(f"Contract deployed at {contract_address}, tx: {tx_hash.hex()}")

        contract = self.w3.eth.contract(address=contract_address, abi=artifact['abi'])
        try:
            logger.info(f"Initializing kills=0 for player {player_address}")
            self._send(contract.functions.adminSetKills(player_address, 0), ADMIN_SET_KILLS_GAS)
        except Exception as e:
            raise ContractDeploymentFailure(
                f"Failed to broadcast initialization tx: {e}") from e

        self.store.put(username, {
            'contractAddress': contract_address,
            'owner': deployer,
            'playerAddress': player_address,
            'deployedAt': time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime()),
        })
        return contract_address

    def get_user_contract(self, username: str) -> Dict[str, Any]:
        """Contract record for username plus the on-chain kill count"""
        record = self.store.get(username)
        if not record:
            raise UserNotFound("Username does not exist")
        contract_address = record['contractAddress']
        logger.info(f"Reading contract {contract_address} for user {username}")

        contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=PLAYER_DATA_ABI
        )
        try:
            kills = str(contract.functions.getKills(record['playerAddress']).call())
        except Exception as e:
            logger.warning(f"getKills failed for {username}: {e}")
            kills = None

        return {
            'contractAddress': record['contractAddress'],
            'owner': record.get('owner'),
            'playerAddress': record.get('playerAddress'),
            'deployedAt': record.get('deployedAt'),
            'kills': kills,
        }

    def status(self) -> Dict[str, Any]:
        return {
            'configured': self.is_configured(),
            'connected': self.w3.is_connected(),
            'rpc_url': self.rpc_url,
            'account_address': self.account.address if self.account else None,
            'registered_users': len(self.store),
        }
