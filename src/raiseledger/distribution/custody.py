"""Custody transfers — the external balance-transfer service contract.

The ledger decides how much moves and whether it may move. The mechanics of
moving fungible value between custody accounts belong to a transfer
service behind this Protocol. Swapping the service requires zero changes to
the coordinator.

Accounts are keyed by (asset, 32-byte identity). Every account has an owner
who alone may authorize transfers out of it. Native (raise currency)
accounts are owned by their own identity; the ledger's custody account and
the token vault are owned by the ledger identity.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Tuple, runtime_checkable

from raiseledger.distribution.prorata import checked_add, checked_sub
from raiseledger.errors import ErrorCode, LedgerError
from raiseledger.models.ledger import require_pubkey, require_u64


class Asset(str, enum.Enum):
    NATIVE = "native"  # raise currency
    TOKEN = "token"    # distributed token


@runtime_checkable
class TransferService(Protocol):
    """Moves value between custody accounts.

    Implementations raise LedgerError(INSUFFICIENT_BALANCE) when the source
    cannot cover the amount and LedgerError(UNAUTHORIZED) when `authority`
    does not own the source. A failed transfer moves nothing.
    """

    def transfer(
        self,
        asset: Asset,
        source: bytes,
        destination: bytes,
        amount: int,
        authority: bytes,
    ) -> None:
        ...

    def balance(self, asset: Asset, account: bytes) -> int:
        ...

    def account_owner(self, asset: Asset, account: bytes) -> Optional[bytes]:
        ...

    def open_account(self, asset: Asset, account: bytes, owner: bytes) -> None:
        ...


@dataclass
class CustodyAccount:
    owner: bytes
    balance: int = 0


class InMemoryTransferService:
    """Process-local transfer service.

    Usage:
        transfers = InMemoryTransferService()
        transfers.credit(Asset.NATIVE, user, 5_000_000_000)
        transfers.transfer(Asset.NATIVE, user, ledger, 1_000, authority=user)
    """

    def __init__(self) -> None:
        self._accounts: Dict[Tuple[Asset, bytes], CustodyAccount] = {}

    def open_account(self, asset: Asset, account: bytes, owner: bytes) -> None:
        key = (Asset(asset), require_pubkey(account, "account"))
        if key in self._accounts:
            raise ValueError(f"Account already open: {asset.value}:{account.hex()}")
        self._accounts[key] = CustodyAccount(owner=require_pubkey(owner, "owner"))

    def account_owner(self, asset: Asset, account: bytes) -> Optional[bytes]:
        entry = self._accounts.get((Asset(asset), bytes(account)))
        return entry.owner if entry is not None else None

    def balance(self, asset: Asset, account: bytes) -> int:
        entry = self._accounts.get((Asset(asset), bytes(account)))
        return entry.balance if entry is not None else 0

    def credit(self, asset: Asset, account: bytes, amount: int) -> int:
        """Deposit externally sourced value (airdrop, mint). Returns new balance.

        Opens a self-owned account if none exists.
        """
        require_u64(amount, "amount")
        entry = self._ensure(asset, account, owner=account)
        entry.balance = checked_add(entry.balance, amount)
        return entry.balance

    def transfer(
        self,
        asset: Asset,
        source: bytes,
        destination: bytes,
        amount: int,
        authority: bytes,
    ) -> None:
        require_u64(amount, "amount")
        src = self._accounts.get((Asset(asset), bytes(source)))
        if src is None:
            raise LedgerError(
                ErrorCode.INSUFFICIENT_BALANCE, f"no {asset.value} account {source.hex()}"
            )
        if src.owner != authority:
            raise LedgerError(ErrorCode.UNAUTHORIZED, "signer does not own the source account")
        if src.balance < amount:
            raise LedgerError(
                ErrorCode.INSUFFICIENT_BALANCE,
                f"{asset.value} balance {src.balance} < {amount}",
            )
        if bytes(source) == bytes(destination):
            return
        dst = self._accounts.get((Asset(asset), bytes(destination)))
        new_dst = checked_add(dst.balance if dst is not None else 0, amount)
        new_src = checked_sub(src.balance, amount)

        dst = self._ensure(asset, destination, owner=destination)
        src.balance = new_src
        dst.balance = new_dst

    def snapshot(self) -> list[dict[str, Any]]:
        """Serializable view of every account, for the state store."""
        return [
            {
                "asset": asset.value,
                "account": account.hex(),
                "owner": entry.owner.hex(),
                "balance": entry.balance,
            }
            for (asset, account), entry in sorted(
                self._accounts.items(), key=lambda item: (item[0][0].value, item[0][1])
            )
        ]

    @classmethod
    def restore(cls, rows: list[dict[str, Any]]) -> InMemoryTransferService:
        service = cls()
        for row in rows:
            key = (Asset(row["asset"]), bytes.fromhex(row["account"]))
            service._accounts[key] = CustodyAccount(
                owner=bytes.fromhex(row["owner"]),
                balance=require_u64(row["balance"], "balance"),
            )
        return service

    def _ensure(self, asset: Asset, account: bytes, owner: bytes) -> CustodyAccount:
        key = (Asset(asset), require_pubkey(account, "account"))
        entry = self._accounts.get(key)
        if entry is None:
            entry = CustodyAccount(owner=require_pubkey(owner, "owner"))
            self._accounts[key] = entry
        return entry
