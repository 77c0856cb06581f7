"""
Reward settlement on Solana.

The rest of the service only sees the ``Settlement`` protocol; every SDK call
lives in ``SolanaSettlement``. All failures surface as SettlementError so
callers can leave their local ledger state untouched.
"""

import base64
import json
import logging
import os
from typing import Dict, Optional, Protocol

from solana.rpc.api import Client
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
from spl.token.client import Token
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import BurnParams, burn, get_associated_token_address

import config
from errors import SettlementError, ValidationFailed
from ledger import CYCLE_BADGE, IMPACT_BADGE

logger = logging.getLogger(__name__)


class Settlement(Protocol):
    def mint_badge(self, wallet_address: str, badge_id: str) -> Dict: ...

    def award_points(self, wallet_address: str, amount: int) -> Dict: ...

    def pay_out_redemption(self, wallet_address: str, amount: int) -> Dict: ...

    def build_burn_transaction(self, wallet_address: str, amount: int) -> Dict: ...

    def create_points_mint(self) -> str: ...

    def points_balance(self, wallet_address: str) -> int: ...


def parse_wallet(wallet_address: str) -> Pubkey:
    try:
        return Pubkey.from_string(str(wallet_address).strip())
    except ValueError:
        raise ValidationFailed("Invalid wallet address")


def explorer_url(signature: str, cluster: str) -> str:
    return f"https://explorer.solana.com/tx/{signature}?cluster={cluster}"


class SolanaSettlement:
    def __init__(self, rpc_url: str = config.SOLANA_RPC_URL, cluster: str = config.SOLANA_CLUSTER,
                 keypair_path: str = config.SOLANA_KEYPAIR_PATH, timeout: float = config.SOLANA_TIMEOUT):
        self.cluster = cluster
        self.keypair_path = keypair_path
        self.client = Client(rpc_url, commitment=Confirmed, timeout=timeout)
        self._keypair: Optional[Keypair] = None
        self.badge_mints = {CYCLE_BADGE: config.BADGE_MINT, IMPACT_BADGE: config.IMPACT_BADGE_MINT}
        self.points_mint = config.POINTS_MINT

    @property
    def keypair(self) -> Keypair:
        if self._keypair is None:
            path = os.path.abspath(self.keypair_path)
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    secret = json.load(fh)
            except (OSError, ValueError) as e:
                raise SettlementError(f"Server wallet not readable at {path}: {e}")
            self._keypair = Keypair.from_bytes(bytes(secret))
        return self._keypair

    def _mint(self, address: str, name: str) -> Pubkey:
        if not address:
            raise SettlementError(f"{name} not set")
        return Pubkey.from_string(address)

    def _token(self, mint: Pubkey) -> Token:
        return Token(self.client, mint, TOKEN_PROGRAM_ID, self.keypair)

    def _get_or_create_ata(self, token: Token, owner: Pubkey) -> Pubkey:
        ata = get_associated_token_address(owner, token.pubkey)
        if self.client.get_account_info(ata).value is None:
            token.create_associated_token_account(owner)
        return ata

    def mint_badge(self, wallet_address: str, badge_id: str) -> Dict:
        """Mint one badge token to the wallet and freeze the account so it cannot move."""
        owner = parse_wallet(wallet_address)
        mint = self._mint(self.badge_mints.get(badge_id, ""), f"Mint for badge {badge_id}")
        try:
            token = self._token(mint)
            ata = self._get_or_create_ata(token, owner)
            mint_sig = str(token.mint_to(ata, self.keypair, 1).value)
            freeze_sig = str(token.freeze_account(ata, self.keypair).value)
        except Exception as e:
            logger.exception("Badge mint failed for %s", wallet_address)
            raise SettlementError(str(e)) from e
        return {
            "signature": mint_sig,
            "freeze_signature": freeze_sig,
            "mint": str(mint),
            "recipient_ata": str(ata),
            "explorer_url": explorer_url(mint_sig, self.cluster),
        }

    def award_points(self, wallet_address: str, amount: int) -> Dict:
        owner = parse_wallet(wallet_address)
        mint = self._mint(self.points_mint, "POINTS_MINT")
        try:
            token = self._token(mint)
            ata = self._get_or_create_ata(token, owner)
            sig = str(token.mint_to(ata, self.keypair, int(amount)).value)
        except Exception as e:
            logger.exception("Points award failed for %s", wallet_address)
            raise SettlementError(str(e)) from e
        return {
            "signature": sig,
            "points_mint": str(mint),
            "recipient_ata": str(ata),
            "explorer_url": explorer_url(sig, self.cluster),
        }

    def pay_out_redemption(self, wallet_address: str, amount: int) -> Dict:
        """Settle a redemption: pay the wallet lamports for the points it gives up."""
        recipient = parse_wallet(wallet_address)
        lamports = max(1, int(amount) * config.REDEEM_LAMPORTS_PER_POINT)
        try:
            payer = self.keypair
            ix = transfer(TransferParams(from_pubkey=payer.pubkey(), to_pubkey=recipient, lamports=lamports))
            blockhash = self.client.get_latest_blockhash().value.blockhash
            tx = Transaction([payer], Message.new_with_blockhash([ix], payer.pubkey(), blockhash), blockhash)
            sig = self.client.send_raw_transaction(bytes(tx), opts=TxOpts(preflight_commitment=Confirmed)).value
            self.client.confirm_transaction(sig, Confirmed)
        except Exception as e:
            logger.exception("Redemption transfer failed for %s", wallet_address)
            raise SettlementError(str(e)) from e
        return {
            "signature": str(sig),
            "explorer_url": explorer_url(str(sig), self.cluster),
            "lamports_sent": lamports,
            "sol_sent": lamports / 1_000_000_000,
        }

    def build_burn_transaction(self, wallet_address: str, amount: int) -> Dict:
        """Unsigned burn of the wallet's points tokens, for the wallet app to sign and send."""
        owner = parse_wallet(wallet_address)
        mint = self._mint(self.points_mint, "POINTS_MINT")
        try:
            ata = get_associated_token_address(owner, mint)
            ix = burn(BurnParams(program_id=TOKEN_PROGRAM_ID, account=ata, mint=mint, owner=owner, amount=int(amount)))
            blockhash = self.client.get_latest_blockhash().value.blockhash
            tx = Transaction.new_unsigned(Message.new_with_blockhash([ix], owner, blockhash))
        except Exception as e:
            logger.exception("Building burn transaction failed for %s", wallet_address)
            raise SettlementError(str(e)) from e
        return {
            "tx_base64": base64.b64encode(bytes(tx)).decode("ascii"),
            "recent_blockhash": str(blockhash),
            "points_mint": str(mint),
        }

    def create_points_mint(self) -> str:
        # decimals 0 => 1 token == 1 point
        try:
            token = Token.create_mint(self.client, self.keypair, self.keypair.pubkey(), 0, TOKEN_PROGRAM_ID)
        except Exception as e:
            logger.exception("Creating points mint failed")
            raise SettlementError(str(e)) from e
        self.points_mint = str(token.pubkey)
        return self.points_mint

    def points_balance(self, wallet_address: str) -> int:
        owner = parse_wallet(wallet_address)
        mint = self._mint(self.points_mint, "POINTS_MINT")
        try:
            ata = get_associated_token_address(owner, mint)
            if self.client.get_account_info(ata).value is None:
                return 0
            return int(self.client.get_token_account_balance(ata).value.amount or 0)
        except Exception as e:
            logger.exception("Balance lookup failed for %s", wallet_address)
            raise SettlementError(str(e)) from e
