"""
Token Ledger Store

Authoritative balance and allowance tables for a single fungible token.
Absent entries read as zero, amounts are unsigned 256-bit integers, and
every mutation either completes in one atomic storage update or leaves the
tables untouched. Underflow or overflow here means an entry point skipped
its precondition checks, so it raises LedgerInvariantError instead of a
request rejection.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
import json
import threading

from .storage import StorageInterface
from .exceptions import ConstructionError, InvalidAmountError, LedgerInvariantError


UINT256_MAX = 2 ** 256 - 1
UINT256_DIGITS = len(str(UINT256_MAX))
MAX_DECIMALS = 255


def require_uint256(value: Any, field_name: str = "amount") -> int:
    """Validate that value is an unsigned 256-bit integer and return it"""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmountError(f"{field_name} must be an integer",
                                 {field_name: repr(value)})
    if value < 0 or value > UINT256_MAX:
        raise InvalidAmountError(f"{field_name} must be between 0 and 2**256 - 1",
                                 {field_name: value})
    return value


def parse_amount(value: Union[int, str], field_name: str = "amount") -> int:
    """
    Parse an amount supplied over a transport.

    Accepts ints and base-10 digit strings; signs, whitespace, decimals and
    exponents are rejected so "1e3" or "-0" never slip through. Strings
    longer than any uint256 are rejected before conversion.
    """
    if isinstance(value, str):
        if not value.isdigit() or not value.isascii():
            raise InvalidAmountError(f"{field_name} must be a base-10 unsigned integer string",
                                     {field_name: value[:UINT256_DIGITS + 2]})
        digits = value.lstrip("0")
        if len(digits) > UINT256_DIGITS:
            raise InvalidAmountError(f"{field_name} must be between 0 and 2**256 - 1",
                                     {"digits": len(digits)})
        value = int(digits or "0")
    return require_uint256(value, field_name)


@dataclass(frozen=True)
class TokenMetadata:
    """
    Immutable token description fixed at construction
    """
    name: str
    symbol: str
    decimals: int
    total_supply: int
    burn_sentinel: str
    deployer: str
    deployed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if not isinstance(self.name, str) or not isinstance(self.symbol, str):
            raise ConstructionError("Token name and symbol must be text")
        if isinstance(self.decimals, bool) or not isinstance(self.decimals, int):
            raise ConstructionError("decimals must be an integer", {"decimals": repr(self.decimals)})
        if self.decimals < 0 or self.decimals > MAX_DECIMALS:
            raise ConstructionError("decimals must be less than 256", {"decimals": self.decimals})
        try:
            require_uint256(self.total_supply, "total_supply")
        except InvalidAmountError as e:
            raise ConstructionError(e.message, e.details) from e
        if not self.burn_sentinel:
            raise ConstructionError("burn sentinel must be a non-empty account")
        if not self.deployer:
            raise ConstructionError("deployer must be a non-empty account")
        if self.deployer == self.burn_sentinel:
            raise ConstructionError("deployer cannot be the burn sentinel",
                                    {"deployer": self.deployer})

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {
            'name': self.name,
            'symbol': self.symbol,
            'decimals': self.decimals,
            'total_supply': str(self.total_supply),
            'burn_sentinel': self.burn_sentinel,
            'deployer': self.deployer,
            'deployed_at': self.deployed_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TokenMetadata':
        """Create TokenMetadata from a stored dictionary"""
        return cls(
            name=data['name'],
            symbol=data['symbol'],
            decimals=int(data['decimals']),
            total_supply=int(data['total_supply']),
            burn_sentinel=data['burn_sentinel'],
            deployer=data['deployer'],
            deployed_at=datetime.fromisoformat(data['deployed_at'])
        )


class LedgerStore:
    """
    Balance and allowance tables with lazy zero defaults

    The store knows nothing about callers; authorization lives in the token
    contract. All reads and writes take the store lock, and the contract
    holds the same lock across a whole request so no reader sees a debit
    without its matching credit.
    """

    BALANCES_TABLE = "balances"
    ALLOWANCES_TABLE = "allowances"
    METADATA_TABLE = "token_metadata"
    METADATA_KEY = "token"

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self._lock = threading.RLock()
        self._metadata: Optional[TokenMetadata] = None
        data = self.storage.load(self.METADATA_TABLE, self.METADATA_KEY)
        if data:
            self._metadata = TokenMetadata.from_dict(data)

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def metadata(self) -> Optional[TokenMetadata]:
        return self._metadata

    @property
    def is_initialized(self) -> bool:
        return self._metadata is not None

    def initialize(self, metadata: TokenMetadata) -> None:
        """
        Record token metadata and credit the deployer with the full supply.

        Raises:
            ConstructionError: If the store already holds a token
        """
        with self._lock:
            if self._metadata is not None or self.storage.exists(self.METADATA_TABLE, self.METADATA_KEY):
                raise ConstructionError("Token already deployed",
                                        {"symbol": self._metadata.symbol if self._metadata else None})
            with self.storage.atomic():
                self.storage.save(self.METADATA_TABLE, self.METADATA_KEY, metadata.to_dict())
                self._write_balance(metadata.deployer, metadata.total_supply)
            self._metadata = metadata

    def balance_of(self, account: str) -> int:
        """Balance of account; zero when the account has never been seen"""
        with self._lock:
            record = self.storage.load(self.BALANCES_TABLE, account)
            return int(record['amount']) if record else 0

    def allowance(self, owner: str, spender: str) -> int:
        """Amount spender may still move out of owner's balance"""
        with self._lock:
            record = self.storage.load(self.ALLOWANCES_TABLE, self._allowance_key(owner, spender))
            return int(record['amount']) if record else 0

    def apply_transfer(self, from_account: str, to_account: str, amount: int) -> None:
        """
        Move amount from one balance to another as a single atomic update.

        Raises:
            LedgerInvariantError: On underflow of the source or overflow of the target
        """
        with self._lock:
            from_balance = self.balance_of(from_account)
            if from_balance < amount:
                raise LedgerInvariantError("Balance underflow", {
                    "account": from_account, "balance": from_balance, "amount": amount
                })
            if from_account == to_account:
                return

            to_balance = self.balance_of(to_account)
            if to_balance + amount > UINT256_MAX:
                raise LedgerInvariantError("Balance overflow", {
                    "account": to_account, "balance": to_balance, "amount": amount
                })

            with self.storage.atomic():
                self._write_balance(from_account, from_balance - amount)
                self._write_balance(to_account, to_balance + amount)

    def set_allowance(self, owner: str, spender: str, amount: int) -> None:
        """Overwrite the (owner, spender) allowance"""
        if amount < 0 or amount > UINT256_MAX:
            raise LedgerInvariantError("Allowance out of range", {"amount": amount})
        with self._lock:
            self._write_allowance(owner, spender, amount)

    def consume_allowance(self, owner: str, spender: str, amount: int) -> int:
        """
        Decrement the (owner, spender) allowance by amount.

        Returns:
            The remaining allowance

        Raises:
            LedgerInvariantError: If the allowance is lower than amount
        """
        with self._lock:
            current = self.allowance(owner, spender)
            if current < amount:
                raise LedgerInvariantError("Allowance underflow", {
                    "owner": owner, "spender": spender, "allowance": current, "amount": amount
                })
            remaining = current - amount
            self._write_allowance(owner, spender, remaining)
            return remaining

    def accounts(self) -> List[str]:
        """Accounts that have a balance entry, in first-seen order"""
        with self._lock:
            return [record['account'] for record in self.storage.load_all(self.BALANCES_TABLE)]

    def balances(self) -> Dict[str, int]:
        """Snapshot of every balance entry"""
        with self._lock:
            return {
                record['account']: int(record['amount'])
                for record in self.storage.load_all(self.BALANCES_TABLE)
            }

    def total_of_balances(self) -> int:
        """Sum of all balance entries; equals total supply in every reachable state"""
        return sum(self.balances().values())

    def _write_balance(self, account: str, amount: int) -> None:
        self.storage.save(self.BALANCES_TABLE, account, {
            'account': account,
            'amount': str(amount)
        })

    def _write_allowance(self, owner: str, spender: str, amount: int) -> None:
        self.storage.save(self.ALLOWANCES_TABLE, self._allowance_key(owner, spender), {
            'owner': owner,
            'spender': spender,
            'amount': str(amount)
        })

    @staticmethod
    def _allowance_key(owner: str, spender: str) -> str:
        # Accounts are opaque text, so encode the pair unambiguously
        return json.dumps([owner, spender], separators=(',', ':'))
