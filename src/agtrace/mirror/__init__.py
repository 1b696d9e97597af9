"""Mirror — optional, best-effort re-recording on a public ledger."""

from agtrace.mirror.anchor import Web3Mirror, order_transition_digest
from agtrace.mirror.dispatcher import MirrorDispatcher, MirrorJob
from agtrace.mirror.port import MirrorPort, NullMirror

__all__ = [
    "MirrorDispatcher",
    "MirrorJob",
    "MirrorPort",
    "NullMirror",
    "Web3Mirror",
    "order_transition_digest",
]
