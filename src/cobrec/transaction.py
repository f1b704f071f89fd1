"""Send a record to a transaction program and read the reply with the same layout.

The transport is supplied by the caller: anything with a
`call(module, data) -> bytes` method works, e.g. a CICS ECI gateway client or a
test double that echoes its input.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from cobrec.copybook.layout import Layout
from cobrec.copybook.record import Record
from cobrec.errors import RecordLengthError

logger = logging.getLogger(__name__)


class TransactionExecutor(Protocol):
    def call(self, module: str, data: bytes) -> bytes:
        """Invoke `module` with `data` as its communication area, return the reply."""
        ...


def call_transaction(
    layout: Layout,
    executor: TransactionExecutor,
    module: str,
    record: Record | None = None,
    prepare: Callable[[Record], None] | None = None,
) -> Record:
    """Call `module` with a record laid out by `layout`.

    With no `record`, a fresh one (VALUE defaults applied) is built. `prepare`
    receives the request record before it is sent so callers can fill it in.
    The reply is wrapped in a new record over the returned bytes.
    """
    request = record if record is not None else layout.new_record()
    if prepare is not None:
        prepare(request)
    payload = bytes(request.buffer)
    logger.debug("calling %s with %d bytes", module, len(payload))
    reply = executor.call(module, payload)
    logger.debug("%s returned %d bytes", module, len(reply))
    if len(reply) < layout.length:
        raise RecordLengthError(
            f"{module} returned {len(reply)} bytes, record needs {layout.length}"
        )
    return layout.new_record(bytes(reply))


@dataclass
class TransactionClient:
    """A layout bound to an executor, for repeated calls with the same commarea."""

    layout: Layout
    executor: TransactionExecutor

    def call(
        self,
        module: str,
        record: Record | None = None,
        prepare: Callable[[Record], None] | None = None,
    ) -> Record:
        return call_transaction(self.layout, self.executor, module, record, prepare)
