from dataclasses import dataclass
from typing import Callable, Iterable, Optional, TypeVar, Union

T = TypeVar('T')

def find(pred: Callable[[T], bool], items: Iterable[T]) -> Optional[T]:
    return next((x for x in items if pred(x)), None)


@dataclass(frozen=True, order=True)
class Time:
    ms: int

    @classmethod
    def millis(cls, qty: int) -> 'Time':
        return cls(qty)

    @classmethod
    def seconds(cls, qty: Union[int, float]) -> 'Time':
        return cls(round(1000 * qty))

    @property
    def s(self) -> int:
        return self.ms // 1000

    @classmethod
    def minutes(cls, qty: int) -> 'Time':
        return cls(60000 * qty)

    @property
    def m(self) -> int:
        return self.ms // 60000

    @classmethod
    def hours(cls, qty: int) -> 'Time':
        return cls(3600000 * qty)

    def __add__(self, other: 'Time') -> 'Time':
        return Time(max(self.ms + other.ms, 0))

    def clock(self) -> str:
        """Minutes and zero-padded seconds, e.g. ``75:04``. Hours fold into minutes."""
        return f"{self.m}:{self.s % 60:02d}"

    @classmethod
    def parse_clock(cls, text: str) -> Optional['Time']:
        """Parses ``M:SS`` or ``H:MM:SS``. Returns None for anything else."""
        pieces = list(reversed(text.strip().split(':')))
        if len(pieces) not in (2, 3) or not all(p.isdigit() for p in pieces):
            return None
        if int(pieces[0]) >= 60 or (len(pieces) == 3 and int(pieces[1]) >= 60):
            return None
        time = cls.seconds(int(pieces[0])) + cls.minutes(int(pieces[1]))
        if 2 < len(pieces): time += cls.hours(int(pieces[2]))
        return time
