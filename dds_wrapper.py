from typing import List, Dict
import endplay.config as config
from endplay.types import Deal, Card as DdsCard, Denom, Player
from endplay.dds import solve_board
from common_objects import Card, Direction, AnalysisUnavailable, SUITS

denom2dds: Dict[str, Denom] = {
    "S": Denom.spades,
    "H": Denom.hearts,
    "D": Denom.diamonds,
    "C": Denom.clubs,
    "N": Denom.nt
}

player2dds: Dict[Direction, Player] = {
    Direction.NORTH: Player.north,
    Direction.EAST: Player.east,
    Direction.SOUTH: Player.south,
    Direction.WEST: Player.west
}

def remaining_pbn(hands: Dict[Direction, List[Card]]) -> str:
    """PBN deal string for the cards still held, e.g. N:AK..Q2. ..."""
    parts: List[str] = []
    for direction in Direction:
        holdings = ["".join(c.rank.abbreviation() for c in sorted((c for c in hands[direction] if c.suit == suit),
                                                                  key=lambda c: c.rank, reverse=True))
                    for suit in SUITS]
        parts.append(".".join(holdings))
    return "N:" + " ".join(parts)

class EndplaySolver:
    """
    Double-dummy oracle on top of endplay's DDS bindings. Each query is independent.
    """

    def __init__(self):
        config.use_unicode = False

    def declarer_tricks(self, hands: Dict[Direction, List[Card]], trump: str, leader: Direction,
                        declarer: Direction, trick_so_far: List[Card]) -> int:
        """
        :param hands: Cards held by each seat at the start of the current trick
        :param trump: S, H, D, C or N
        :param leader: Seat that led (or will lead) the current trick
        :param declarer: Declaring seat; the result is counted for its side
        :param trick_so_far: Cards already played to the current trick, in order
        :return: Tricks the declaring side takes from the remaining tricks, current one included
        """
        remaining = len(hands[leader])
        if remaining == 0:
            return 0
        pbn = remaining_pbn(hands)
        try:
            deal = Deal.from_pbn(pbn)
            deal.trump = denom2dds[trump]
            deal.first = player2dds[leader]
            for card in trick_so_far:
                deal.play(DdsCard(str(card)))
            to_play = leader.offset(len(trick_so_far))
            best = max(tricks for _, tricks in solve_board(deal))
        except Exception as e:
            raise AnalysisUnavailable(f"Solver failed on {pbn} leader {leader.name}: {e}") from e
        return best if to_play.same_side(declarer) else remaining - best
