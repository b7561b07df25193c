from dataclasses import dataclass, field
from typing import Optional, Dict, List
from enum import Enum, IntEnum
from functools import total_ordering
from line_profiler import LineProfiler

class BridgeDataError(Exception):
    """Base class for row-level failures. The pipeline records these and moves on."""

class MalformedPayload(BridgeDataError, ValueError):
    """A LIN payload is structurally invalid."""
    def __init__(self, segment: str, message: str):
        self.segment = segment
        self.message = message
        super().__init__(f"{segment}: {message}" if segment else message)

class ResolutionFailed(BridgeDataError):
    """A shortened link could not be resolved to a LIN payload."""
    def __init__(self, reason: str, transient: bool = False, status: Optional[int] = None):
        self.reason = reason
        self.transient = transient
        self.status = status
        super().__init__(reason)

class AnalysisUnavailable(BridgeDataError):
    """The double-dummy solver cannot evaluate the position."""

@total_ordering
class Rank(Enum):
    TWO     = (2, "2")
    THREE   = (3, "3")
    FOUR    = (4, "4")
    FIVE    = (5, "5")
    SIX     = (6, "6")
    SEVEN   = (7, "7")
    EIGHT   = (8, "8")
    NINE    = (9, "9")
    TEN     = (10, "T")
    JACK    = (11, "J")
    QUEEN   = (12, "Q")
    KING    = (13, "K")
    ACE     = (14, "A")

    @classmethod
    def from_str(cls, rank_str: str) -> "Rank":
        rank_str = rank_str.upper()
        if rank_str == "10":
            rank_str = "T"
        for rank in cls:
            if rank.value[1] == rank_str:
                return rank
        raise ValueError(f"Unknown rank {rank_str}")

    def __lt__(self, other) -> bool:
        return self.value[0] < other.value[0]

    def __repr__(self) -> str:
        return self.name

    def abbreviation(self) -> str:
        return self.value[1]

SUITS: str = "SHDC"     # Display and holding order
rank_order = "AKQJT98765432"
rank_positions = {card: i for i, card in enumerate(rank_order)}

def sort_holding(holding: str | List[str]) -> str:
    """
    Sorts cards in descending rank order. Input must be valid cards:
    Either a string (e.g. "QA39") or a list of cards
    """
    return ''.join(sorted(holding, key=lambda x: rank_positions[x]))

@dataclass(frozen=True)
class Card:
    suit: str
    rank: Rank

    @classmethod
    def from_str(cls, card_str: str) -> "Card":
        """:param card_str: suit letter followed by a rank, e.g. "D2", "SA", "H10" """
        card_str = card_str.strip().upper()
        if len(card_str) < 2 or card_str[0] not in SUITS:
            raise ValueError(f"Invalid card {card_str}")
        return cls(card_str[0], Rank.from_str(card_str[1:]))

    def __str__(self) -> str:
        return self.suit + self.rank.abbreviation()

    def __repr__(self) -> str:
        return str(self)

@total_ordering
class Direction(IntEnum):
    NORTH = 0
    EAST = 1
    SOUTH = 2
    WEST = 3

    @classmethod
    def from_str(cls, direction_str: str) -> "Direction":
        letter = direction_str.strip().upper()[:1]
        for direction in cls:
            if direction.name[0] == letter:
                return direction
        raise ValueError(f"Unknown direction {direction_str}")

    def __lt__(self, other) -> bool:
        return self.value < other.value

    def __repr__(self) -> str:
        return self.name

    def offset(self, offset: int) -> "Direction":
        return Direction((self.value + offset) % 4)

    def next(self) -> "Direction":
        return self.offset(1)

    def partner(self) -> "Direction":
        return self.offset(2)

    def previous(self) -> "Direction":
        return self.offset(3)

    def abbreviation(self) -> str:
        return self.name[0]

    def side(self) -> str:
        return "NS" if self in (Direction.NORTH, Direction.SOUTH) else "EW"

    def same_side(self, other: "Direction") -> bool:
        return self.side() == other.side()

class Vulnerability(Enum):
    NONE = "Z"
    BOTH = "B"
    NS = "N"
    EW = "E"

@dataclass
class Call:
    """One auction call in canonical form (1C..7N, P, X, XX)."""
    bid: str
    alerted: bool = False
    annotation: Optional[str] = None

@dataclass
class PlayedCard:
    card: Card
    annotation: Optional[str] = None

@dataclass
class BridgeDeal:
    """Holdings per seat, each a list of four rank strings in S, H, D, C order."""
    Hands: Dict[Direction, List[str]] = field(default_factory=dict)

    def cards(self, direction: Direction) -> List[Card]:
        return [Card(suit, Rank.from_str(r)) for suit, holding in zip(SUITS, self.Hands[direction]) for r in holding]

    def holder(self, card: Card) -> Optional[Direction]:
        for direction, holdings in self.Hands.items():
            if card.rank.abbreviation() in holdings[SUITS.index(card.suit)]:
                return direction
        return None

    def to_pbn(self, first: Direction = Direction.NORTH) -> str:
        hands: List[str] = []
        direction = first
        for _ in range(4):
            hands.append(".".join(self.Hands[direction]))
            direction = direction.next()
        return f"{first.abbreviation()}:" + " ".join(hands)

@dataclass
class HandRecord:
    """One deal decoded from a LIN payload."""
    Players: Dict[Direction, str]
    Dealer: Direction
    Vulnerability: Vulnerability
    Deal: BridgeDeal
    Auction: List[Call] = field(default_factory=list)
    Play: List[PlayedCard] = field(default_factory=list)
    Claim: Optional[int] = None
    BoardName: Optional[str] = None

    def tricks(self) -> List[List[Card]]:
        cards = [pc.card for pc in self.Play]
        return [cards[i:i + 4] for i in range(0, len(cards), 4)]

    def cardplay(self) -> str:
        return "|".join("-".join(str(card) for card in trick) for trick in self.tricks())

@dataclass
class TrickCost:
    card: Card
    seat: Direction
    optimal: int
    actual: int
    cost: int

lineProf: LineProfiler = LineProfiler()
