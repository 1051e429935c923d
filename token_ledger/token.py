"""
Token Contract

Entry points of the single-contract token: one-time construction, the
read-only accessors, and the three mutating operations transfer,
transfer_from and approve. Preconditions are checked in a fixed order
before anything is written, so a rejected request leaves the ledger and
the event log exactly as they were. Successful calls always return True;
failures raise instead of returning False.
"""

from contextlib import contextmanager
from typing import Iterator, List, Optional

from .storage import StorageInterface
from .audit import AuditTrail, AuditEventType
from .events import (
    EventDispatcher, EventLog, EventPayload,
    create_transfer_event, create_approval_event
)
from .exceptions import (
    ConstructionError, RequestRejected, ZeroAddressError,
    InsufficientBalanceError, InsufficientAllowanceError,
    LedgerInvariantError
)
from .ledger import LedgerStore, TokenMetadata, require_uint256
from .logging_config import get_logger, log_action


class TokenContract:
    """
    Fungible token bound to one storage backend

    The caller argument of each mutating method is the identity the
    transport authenticated; it is never taken from request data.
    """

    def __init__(
        self,
        storage: StorageInterface,
        event_dispatcher: Optional[EventDispatcher] = None,
        audit_trail: Optional[AuditTrail] = None
    ):
        self.storage = storage
        self.store = LedgerStore(storage)
        if not self.store.is_initialized:
            raise ConstructionError("No token deployed in this storage")
        self.event_log = EventLog(storage)
        self.event_dispatcher = event_dispatcher or EventDispatcher()
        self.audit_trail = audit_trail or AuditTrail(storage)
        self.logger = get_logger("token_ledger.token")

    @classmethod
    def deploy(
        cls,
        storage: StorageInterface,
        name: str,
        symbol: str,
        decimals: int,
        total_supply: int,
        burn_sentinel: str,
        deployer: str,
        event_dispatcher: Optional[EventDispatcher] = None,
        audit_trail: Optional[AuditTrail] = None
    ) -> 'TokenContract':
        """
        Create the token: fix metadata, credit the deployer with the whole
        supply and emit Transfer(burn_sentinel, deployer, total_supply).

        Raises:
            ConstructionError: If metadata is malformed or a token already exists
        """
        metadata = TokenMetadata(
            name=name,
            symbol=symbol,
            decimals=decimals,
            total_supply=total_supply,
            burn_sentinel=burn_sentinel,
            deployer=deployer
        )

        store = LedgerStore(storage)
        event_log = EventLog(storage)
        with store.lock, storage.atomic():
            store.initialize(metadata)
            issuance = event_log.append(create_transfer_event(burn_sentinel, deployer, total_supply))

        contract = cls(storage, event_dispatcher, audit_trail)
        contract.event_dispatcher.publish(issuance)
        contract.audit_trail.log_event(
            event_type=AuditEventType.TOKEN_DEPLOYED,
            entity_type="token",
            entity_id=symbol,
            caller=deployer,
            metadata=metadata.to_dict()
        )
        log_action(
            contract.logger, "info", f"Token {symbol} deployed",
            caller=deployer, action="deploy", resource=symbol,
            extra={"total_supply": str(total_supply), "decimals": decimals}
        )
        return contract

    # Read-only accessors

    @property
    def metadata(self) -> TokenMetadata:
        return self.store.metadata

    def name(self) -> str:
        return self.metadata.name

    def symbol(self) -> str:
        return self.metadata.symbol

    def decimals(self) -> int:
        return self.metadata.decimals

    def total_supply(self) -> int:
        return self.metadata.total_supply

    def balance_of(self, account: str) -> int:
        return self.store.balance_of(account)

    def allowance(self, owner: str, spender: str) -> int:
        return self.store.allowance(owner, spender)

    def held_value(self) -> int:
        """Value held in custody by the contract itself; payments are never accepted"""
        return 0

    def events(self, since: int = 0, limit: Optional[int] = None) -> List[EventPayload]:
        """Notifications emitted after sequence number since"""
        return self.event_log.since(since, limit)

    def check_conservation(self) -> None:
        """
        Raises:
            LedgerInvariantError: If balances no longer sum to total supply
        """
        with self.store.lock:
            total = self.store.total_of_balances()
        if total != self.total_supply():
            raise LedgerInvariantError("Balances do not sum to total supply", {
                "sum_of_balances": total, "total_supply": self.total_supply()
            })

    # Mutating entry points

    def transfer(self, caller: str, to_account: str, amount: int) -> bool:
        """Move amount from caller to to_account"""
        amount = self._validate_amount("transfer", caller, amount)
        with self.store.lock:
            with self._rejections("transfer", caller):
                self._require_not_sentinel(to_account, "to_account")
                self._require_balance(caller, amount)

            with self._invariants("transfer", caller):
                events = self._commit(
                    lambda: self.store.apply_transfer(caller, to_account, amount),
                    lambda _: [create_transfer_event(caller, to_account, amount)]
                )
            self._publish(events)

        self.audit_trail.log_event(
            event_type=AuditEventType.TRANSFER_APPLIED,
            entity_type="account",
            entity_id=caller,
            caller=caller,
            metadata={"to": to_account, "amount": amount}
        )
        log_action(self.logger, "info", "Transfer applied", caller=caller,
                   action="transfer", resource=to_account, extra={"amount": str(amount)})
        return True

    def transfer_from(self, caller: str, from_account: str, to_account: str, amount: int) -> bool:
        """Move amount from from_account to to_account, spending caller's allowance"""
        amount = self._validate_amount("transfer_from", caller, amount)
        with self.store.lock:
            with self._rejections("transfer_from", caller):
                self._require_not_sentinel(from_account, "from_account")
                self._require_not_sentinel(to_account, "to_account")
                self._require_balance(from_account, amount)
                allowance = self.store.allowance(from_account, caller)
                if allowance < amount:
                    raise InsufficientAllowanceError("Insufficient allowance", {
                        "owner": from_account, "spender": caller,
                        "allowance": allowance, "amount": amount
                    })

            def apply():
                self.store.apply_transfer(from_account, to_account, amount)
                return self.store.consume_allowance(from_account, caller, amount)

            with self._invariants("transfer_from", caller):
                events = self._commit(
                    apply,
                    lambda remaining: [
                        create_transfer_event(from_account, to_account, amount),
                        create_approval_event(from_account, caller, remaining)
                    ]
                )
            self._publish(events)

        self.audit_trail.log_event(
            event_type=AuditEventType.TRANSFER_FROM_APPLIED,
            entity_type="account",
            entity_id=from_account,
            caller=caller,
            metadata={"to": to_account, "amount": amount}
        )
        log_action(self.logger, "info", "Delegated transfer applied", caller=caller,
                   action="transfer_from", resource=from_account,
                   extra={"to": to_account, "amount": str(amount)})
        return True

    def approve(self, caller: str, spender: str, amount: int) -> bool:
        """
        Set spender's allowance over caller's balance to amount.

        Overwrites rather than adds. Changing a non-zero allowance to another
        non-zero value is open to the usual approve race; callers that care
        should approve 0 first.
        """
        amount = self._validate_amount("approve", caller, amount)
        with self.store.lock:
            with self._rejections("approve", caller):
                self._require_not_sentinel(spender, "spender")

            with self._invariants("approve", caller):
                events = self._commit(
                    lambda: self.store.set_allowance(caller, spender, amount),
                    lambda _: [create_approval_event(caller, spender, amount)]
                )
            self._publish(events)

        self.audit_trail.log_event(
            event_type=AuditEventType.APPROVAL_SET,
            entity_type="account",
            entity_id=caller,
            caller=caller,
            metadata={"spender": spender, "amount": amount}
        )
        log_action(self.logger, "info", "Allowance set", caller=caller,
                   action="approve", resource=spender, extra={"amount": str(amount)})
        return True

    def record_rejection(self, action: str, caller: str, error: RequestRejected) -> None:
        """Log and audit a rejected request"""
        self.audit_trail.log_event(
            event_type=AuditEventType.REQUEST_REJECTED,
            entity_type="request",
            entity_id=action,
            caller=caller,
            metadata={"error": type(error).__name__, "message": error.message, "details": error.details}
        )
        log_action(self.logger, "warning", f"Request rejected: {error}", caller=caller,
                   action=action, extra={"error": type(error).__name__})

    # Internals

    def _validate_amount(self, action: str, caller: str, amount) -> int:
        with self._rejections(action, caller):
            return require_uint256(amount)

    def _require_not_sentinel(self, account: str, role: str) -> None:
        if account == self.metadata.burn_sentinel:
            raise ZeroAddressError(f"{role} cannot be the zero address", {role: account})

    def _require_balance(self, account: str, amount: int) -> None:
        balance = self.store.balance_of(account)
        if balance < amount:
            raise InsufficientBalanceError("Insufficient balance", {
                "account": account, "balance": balance, "amount": amount
            })

    def _commit(self, mutate, build_events) -> List[EventPayload]:
        """Apply the mutation and append its notifications in one storage transaction"""
        try:
            with self.storage.atomic():
                outcome = mutate()
                events = build_events(outcome)
                return [self.event_log.append(event) for event in events]
        except Exception:
            self.event_log.resync()
            raise

    def _publish(self, events: List[EventPayload]) -> None:
        for event in events:
            self.event_dispatcher.publish(event)

    @contextmanager
    def _rejections(self, action: str, caller: str) -> Iterator[None]:
        try:
            yield
        except RequestRejected as e:
            self.record_rejection(action, caller, e)
            raise

    @contextmanager
    def _invariants(self, action: str, caller: str) -> Iterator[None]:
        try:
            yield
        except LedgerInvariantError as e:
            self.audit_trail.log_event(
                event_type=AuditEventType.INVARIANT_VIOLATION,
                entity_type="request",
                entity_id=action,
                caller=caller,
                metadata={"message": e.message, "details": e.details}
            )
            log_action(self.logger, "critical", f"Ledger invariant violated: {e}",
                       caller=caller, action=action)
            raise
