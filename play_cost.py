import logging
from typing import List, Tuple, Dict
from common_objects import HandRecord, Card, Direction, TrickCost, AnalysisUnavailable
from auction import derive_contract

logger = logging.getLogger(__name__)

def trick_winner(trick: List[Card], trump: str, leader: Direction) -> Direction:
    """Highest trump wins, otherwise the highest card of the suit led"""
    winner_idx = 0
    for i, card in enumerate(trick[1:], start=1):
        best = trick[winner_idx]
        if card.suit == best.suit:
            if card.rank > best.rank:
                winner_idx = i
        elif card.suit == trump:
            winner_idx = i
    return leader.offset(winner_idx)

def resolve_contract(record: HandRecord) -> Tuple[str, Direction, str]:
    """
    :return: (trump, declarer, contract). The opening lead, when present, fixes the declarer
     since it comes from the player on declarer's left.
    """
    auction = derive_contract(record.Dealer, record.Auction)
    if auction.passed_out:
        raise AnalysisUnavailable("Deal was passed out")
    if not auction.strain:
        raise AnalysisUnavailable(f"No contract in {auction.status.lower()} auction")
    declarer = auction.declarer
    if record.Play:
        leader = record.Deal.holder(record.Play[0].card)
        if leader is not None and leader.previous() != declarer:
            logger.info(f"Opening lead {record.Play[0].card} puts declarer at {leader.previous().name}, "
                        f"auction says {declarer.name if declarer else 'nobody'}")
            declarer = leader.previous()
    if declarer is None:
        raise AnalysisUnavailable("Cannot determine declarer")
    return auction.strain, declarer, auction.contract

def analyze_play(record: HandRecord, solver) -> List[TrickCost]:
    """
    Score every played card against double-dummy optimal play.
    :param record: A decoded hand with a non-empty play sequence
    :param solver: Anything with a declarer_tricks(hands, trump, leader, declarer, trick_so_far) method
    :return: One TrickCost per card played, in play order. optimal/actual are declarer-side totals
     (tricks already won plus tricks still available) before and after the card.
    """
    if not record.Play:
        raise AnalysisUnavailable("No cardplay to analyze")
    trump, declarer, contract = resolve_contract(record)
    hands: Dict[Direction, List[Card]] = {d: record.Deal.cards(d) for d in Direction}
    leader = declarer.next()
    declarer_won = 0
    trick: List[Card] = []
    before = solver.declarer_tricks(hands, trump, leader, declarer, [])
    costs: List[TrickCost] = []

    for played in record.Play:
        card = played.card
        seat = leader.offset(len(trick))
        if card not in hands[seat]:
            raise AnalysisUnavailable(f"{seat.name} does not hold {card} in trick {len(costs) // 4 + 1}")
        trick.append(card)
        if len(trick) == 4:
            winner = trick_winner(trick, trump, leader)
            if winner.same_side(declarer):
                declarer_won += 1
            for i, c in enumerate(trick):
                hands[leader.offset(i)].remove(c)
            leader = winner
            trick = []
            after = declarer_won
            if hands[leader]:
                after += solver.declarer_tricks(hands, trump, leader, declarer, [])
        else:
            after = declarer_won + solver.declarer_tricks(hands, trump, leader, declarer, list(trick))

        # Declaring side loses when the total drops, defenders when it rises
        delta = before - after if seat.same_side(declarer) else after - before
        if delta < 0:
            logger.warning(f"{contract} by {declarer.name}: {card} by {seat.name} gains {-delta} trick(s) "
                           f"over the solver's optimum, counting it as 0")
            delta = 0
        costs.append(TrickCost(card=card, seat=seat, optimal=before, actual=after, cost=delta))
        before = after
    return costs

def play_seats(record: HandRecord) -> List[Direction]:
    """The seat that played each card of record.Play"""
    trump, declarer, _ = resolve_contract(record)
    leader = declarer.next()
    seats: List[Direction] = []
    trick: List[Card] = []
    for played in record.Play:
        seats.append(leader.offset(len(trick)))
        trick.append(played.card)
        if len(trick) == 4:
            leader = trick_winner(trick, trump, leader)
            trick = []
    return seats

def format_costs(costs: List[TrickCost]) -> str:
    """T1:0,0,0,0|T2:0,0,1,0 with one group per trick"""
    values = [c.cost for c in costs]
    return "|".join(f"T{n + 1}:" + ",".join(str(v) for v in values[i:i + 4])
                    for n, i in enumerate(range(0, len(values), 4)))

def parse_costs(text: str) -> List[List[int]]:
    """Inverse of format_costs"""
    tricks: List[List[int]] = []
    for part in text.split("|"):
        if ":" not in part:
            continue
        _, values = part.split(":", 1)
        tricks.append([int(v) for v in values.split(",") if v.strip()])
    return tricks
