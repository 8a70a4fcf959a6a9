"""
Order Instructions

The only externally visible output of the engine. Instructions are handed
to an execution layer that fills them at the open of the bar after the
signal bar (one-bar lag, no look-ahead).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


NEXT_BAR_OPEN = "next_bar_open"


class Side(Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def sign(self) -> int:
        return 1 if self is Side.LONG else -1


class OrderAction(Enum):
    OPEN = "open"
    CLOSE = "close"


class EntryPattern(Enum):
    ORB_RETEST = "orb_retest"
    EMA_CATCHUP = "ema_catchup"
    VWAP_RETEST = "vwap_retest"


class ExitReason(Enum):
    STOP_OUT = "stop_out"
    TARGET2 = "target2"
    DIVERGENCE = "divergence_exit"
    STRUCTURE_BREAK = "structure_break"
    TIME_EXIT = "time_exit"


@dataclass(frozen=True)
class OrderInstruction:
    """A single open/close instruction for one side of one instrument."""
    symbol: str
    side: Side
    action: OrderAction
    size: int
    tag: str                # entry pattern id or exit reason
    bar_time: int           # signal bar timestamp
    signal_price: float     # signal bar close
    stop_price: Optional[float] = None
    target_price: Optional[float] = None
    reference_price_rule: str = NEXT_BAR_OPEN

    def to_dict(self) -> Dict[str, Any]:
        return {
            'symbol': self.symbol,
            'side': self.side.value,
            'action': self.action.value,
            'size': self.size,
            'tag': self.tag,
            'bar_time': self.bar_time,
            'signal_price': self.signal_price,
            'stop_price': self.stop_price,
            'target_price': self.target_price,
            'reference_price_rule': self.reference_price_rule,
        }
