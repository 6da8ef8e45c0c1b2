"""Transaction pipeline: fees, balance reads, submission, confirmation and queueing."""

from sessionwallet.pipeline.actions import ActionKind, build_action_record, encode_action_record
from sessionwallet.pipeline.confirmation import ConfirmationOutcome, ConfirmationPoller
from sessionwallet.pipeline.fees import FeePolicy, FeeQuote, Sufficiency
from sessionwallet.pipeline.oracle import BalanceOracle
from sessionwallet.pipeline.queue import ActionQueue
from sessionwallet.pipeline.status import (
    QueueItem,
    StatusKind,
    SubmissionState,
    TransactionResult,
    TransactionStatus,
)
from sessionwallet.pipeline.submitter import Submitter

__all__ = [
    "ActionKind",
    "build_action_record",
    "encode_action_record",
    "ConfirmationOutcome",
    "ConfirmationPoller",
    "FeePolicy",
    "FeeQuote",
    "Sufficiency",
    "BalanceOracle",
    "ActionQueue",
    "QueueItem",
    "StatusKind",
    "SubmissionState",
    "TransactionResult",
    "TransactionStatus",
    "Submitter",
]
