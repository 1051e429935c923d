"""
Request Dispatcher

Runs the token's mutating entry points on a single worker thread. Requests
are admitted into a FIFO queue and each one runs to completion (validation,
state update, notification) before the next is taken, so check-then-update
sequences on shared balance and allowance entries never interleave.

The loop has no protocol-level end state. stop() exists for process
shutdown only; a ledger invariant violation halts the loop for good.
"""

from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
import queue
import threading
import uuid

from .audit import AuditEventType
from .exceptions import (
    DispatcherBusyError, DispatcherHaltedError, LedgerInvariantError,
    NonPayableError, RequestRejected
)
from .logging_config import get_logger, log_action
from .token import TokenContract


@dataclass(frozen=True)
class TransferRequest:
    """transfer(to, amount) issued by caller"""
    caller: str
    to_account: str
    amount: int
    attached_value: int = 0
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    action = "transfer"

    def apply(self, contract: TokenContract) -> bool:
        return contract.transfer(self.caller, self.to_account, self.amount)


@dataclass(frozen=True)
class TransferFromRequest:
    """transferFrom(from, to, amount) issued by a spender"""
    caller: str
    from_account: str
    to_account: str
    amount: int
    attached_value: int = 0
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    action = "transfer_from"

    def apply(self, contract: TokenContract) -> bool:
        return contract.transfer_from(self.caller, self.from_account, self.to_account, self.amount)


@dataclass(frozen=True)
class ApproveRequest:
    """approve(spender, amount) issued by an owner"""
    caller: str
    spender: str
    amount: int
    attached_value: int = 0
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    action = "approve"

    def apply(self, contract: TokenContract) -> bool:
        return contract.approve(self.caller, self.spender, self.amount)


_STOP = object()


class RequestDispatcher:
    """
    Single-threaded serializer in front of a TokenContract

    submit() admits a request and returns a Future that resolves to True or
    raises the rejection. Admission order is application order.
    """

    def __init__(self, contract: TokenContract, maxsize: int = 0):
        self.contract = contract
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize)
        self._admission_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._halted_by: Optional[LedgerInvariantError] = None
        self._processed = 0
        self.logger = get_logger("token_ledger.dispatcher")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def halted_by(self) -> Optional[LedgerInvariantError]:
        return self._halted_by

    @property
    def processed_count(self) -> int:
        return self._processed

    def held_value(self) -> int:
        """The ledger never takes custody of attached payments"""
        return self.contract.held_value()

    def start(self) -> None:
        """
        Start the worker thread.

        Raises:
            DispatcherHaltedError: If an invariant violation halted the loop
            DispatcherBusyError: If a stopped worker has not exited yet
        """
        with self._admission_lock:
            if self._running:
                return
            if self._halted_by is not None:
                raise DispatcherHaltedError("Dispatcher halted by invariant violation",
                                            {"cause": str(self._halted_by)})
            if self._thread is not None and self._thread.is_alive():
                raise DispatcherBusyError("Previous worker is still draining requests",
                                          {"thread": self._thread.name})
            self._running = True
            self._thread = threading.Thread(target=self._run, name="token-ledger-dispatcher")
            self._thread.daemon = True
            self._thread.start()

        self.contract.audit_trail.log_event(
            event_type=AuditEventType.DISPATCHER_STARTED,
            entity_type="token",
            entity_id=self.contract.symbol()
        )
        self.logger.info("Request dispatcher started")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """
        Stop accepting requests. Requests admitted before the call still run
        to completion before the worker exits.
        """
        with self._admission_lock:
            if not self._running:
                return
            self._running = False
            thread = self._thread
        self._queue.put(_STOP)

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)

        self.contract.audit_trail.log_event(
            event_type=AuditEventType.DISPATCHER_STOPPED,
            entity_type="token",
            entity_id=self.contract.symbol(),
            metadata={"processed": self._processed}
        )
        self.logger.info("Request dispatcher stopped")

    def submit(self, request) -> Future:
        """
        Admit a request. Once admitted it cannot be cancelled.

        Raises:
            DispatcherHaltedError: If the dispatcher is stopped or halted
            DispatcherBusyError: If the request queue is full
        """
        with self._admission_lock:
            if self._halted_by is not None:
                raise DispatcherHaltedError("Dispatcher halted by invariant violation",
                                            {"cause": str(self._halted_by)})
            if not self._running:
                raise DispatcherHaltedError("Dispatcher is not running")

            future: Future = Future()
            future.set_running_or_notify_cancel()
            try:
                self._queue.put_nowait((request, future))
            except queue.Full:
                raise DispatcherBusyError("Request queue is full", {"maxsize": self._queue.maxsize})
            return future

    def execute(self, request, timeout: Optional[float] = None) -> bool:
        """Submit a request and wait for its outcome"""
        return self.submit(request).result(timeout=timeout)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                break
            request, future = item
            self._process(request, future)
            if self._halted_by is not None:
                break

    def _process(self, request, future: Future) -> None:
        try:
            if request.attached_value:
                error = NonPayableError("Ledger entry points do not accept payment", {
                    "attached_value": request.attached_value
                })
                self.contract.record_rejection(request.action, request.caller, error)
                raise error
            result = request.apply(self.contract)
        except LedgerInvariantError as e:
            future.set_exception(e)
            self._halt(e)
        except RequestRejected as e:
            future.set_exception(e)
        except Exception as e:
            log_action(self.logger, "error", f"Unexpected error processing {request.action}: {e}",
                       caller=request.caller, action=request.action,
                       correlation_id=request.request_id)
            future.set_exception(e)
        else:
            future.set_result(result)
        finally:
            self._processed += 1

    def _halt(self, cause: LedgerInvariantError) -> None:
        with self._admission_lock:
            self._halted_by = cause
            self._running = False
            pending = self._drain()

        self.logger.critical(f"Dispatcher halted: {cause}")
        for request, future in pending:
            future.set_exception(DispatcherHaltedError(
                "Dispatcher halted before request ran",
                {"request_id": request.request_id, "cause": str(cause)}
            ))

    def _drain(self) -> List[Tuple[object, Future]]:
        drained = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return drained
            if item is not _STOP:
                drained.append(item)
