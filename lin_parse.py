import logging
from dataclasses import dataclass, field
from functools import reduce
from typing import Dict, List, Optional, Final, Tuple, Set
from common_objects import HandRecord, BridgeDeal, Call, PlayedCard, Card, Direction, Vulnerability
from common_objects import MalformedPayload, SUITS, sort_holding

logger = logging.getLogger(__name__)

# LIN lists seats, hands and the dealer digit starting with South
LIN_SEATS: Final[List[Direction]] = [Direction.SOUTH, Direction.WEST, Direction.NORTH, Direction.EAST]
_VUL_MAP: Final[Dict[str, Vulnerability]] = {
    "o": Vulnerability.NONE,
    "0": Vulnerability.NONE,
    "b": Vulnerability.BOTH,
    "n": Vulnerability.NS,
    "e": Vulnerability.EW,
}
_BID_ALIASES: Final[Dict[str, str]] = {
    "D": "X", "DBL": "X", "X": "X",
    "R": "XX", "RDBL": "XX", "REDBL": "XX", "XX": "XX",
    "P": "P", "PASS": "P",
}
NCARDS_IN_HAND: Final[int] = 13

def split_segments(payload: str) -> List[Tuple[str, str]]:
    """
    Split a LIN payload into (code, value) pairs
    :param payload: e.g. "pn|South,West,North,East|md|3S...|sv|o|"
    """
    fields = payload.strip().split("|")
    if fields and fields[-1].strip() == "":
        fields = fields[:-1]    # Trailing separator after the last value
    if len(fields) % 2 != 0:
        raise MalformedPayload(fields[-1], "segment code without a value")
    return [(fields[i].strip().lower(), fields[i + 1]) for i in range(0, len(fields), 2)]

def canonicalize_bid(bid: str) -> Optional[Tuple[str, bool]]:
    """:return: (canonical bid, alerted) or None for an unrecognizable call"""
    alerted = "!" in bid
    bid = bid.upper().replace("!", "").strip()
    if bid in _BID_ALIASES:
        return _BID_ALIASES[bid], alerted
    bid = bid.replace("NT", "N")
    if len(bid) == 2 and bid[0] in "1234567" and bid[1] in "CDHSN":
        return bid, alerted
    return None

def parse_lin_holding(holding: str, segment: str) -> List[str]:
    """
    :param holding: A LIN style holding like SAKQ952HK65DQ6CKT
    :return: Four rank strings, sorted high to low, in S, H, D, C order
    """
    holding = holding.upper().replace("10", "T")
    suit_holdings: Dict[str, List[str]] = {}
    current: Optional[str] = None
    for c in holding:
        if c in SUITS:
            if c in suit_holdings:
                raise MalformedPayload(segment, f"suit {c} repeated in holding {holding}")
            current = c
            suit_holdings[current] = []
        elif current is None:
            raise MalformedPayload(segment, f"rank {c} before any suit in holding {holding}")
        elif c in "AKQJT98765432":
            suit_holdings[current].append(c)
        else:
            raise MalformedPayload(segment, f"invalid character {c} in holding {holding}")
    return [sort_holding(suit_holdings.get(suit, [])) for suit in SUITS]

def _complete_missing_hand(hands: Dict[Direction, List[str]]) -> None:
    """Fill in a single omitted hand with the cards the other three do not hold"""
    missing = [d for d, h in hands.items() if sum(len(s) for s in h) == 0]
    if len(missing) != 1:
        return
    for suit_index in range(len(SUITS)):
        held: Set[str] = set()
        for d, h in hands.items():
            held.update(h[suit_index])
        hands[missing[0]][suit_index] = sort_holding([r for r in "AKQJT98765432" if r not in held])

def parse_deal(value: str) -> Tuple[Direction, BridgeDeal]:
    """
    Convert an md node into the dealer and a deal in absolute seat order
    :param value: Holdings like "3S98643HAJT54DCJT4,SQJTH98DKT7542C76,S5HKQ3DJ93CAKQ832,"
    """
    segment = f"md|{value}"
    if len(value) < 2 or value[0] not in "1234":
        raise MalformedPayload(segment, "missing dealer indicator")
    dealer: Direction = LIN_SEATS[int(value[0]) - 1]
    raw_hands = value[1:].split(",")
    while len(raw_hands) > 4 and raw_hands[-1].strip() == "":
        raw_hands.pop()
    if len(raw_hands) > 4:
        raise MalformedPayload(segment, f"{len(raw_hands)} hands")
    raw_hands += [""] * (4 - len(raw_hands))
    hands: Dict[Direction, List[str]] = {
        LIN_SEATS[i]: parse_lin_holding(raw, segment) for i, raw in enumerate(raw_hands)
    }
    _complete_missing_hand(hands)

    seen: Set[Tuple[str, str]] = set()
    for direction in Direction:
        count = sum(len(s) for s in hands[direction])
        if count != NCARDS_IN_HAND:
            raise MalformedPayload(segment, f"{direction.name} holds {count} cards")
        for suit, holding in zip(SUITS, hands[direction]):
            for rank in holding:
                if (suit, rank) in seen:
                    raise MalformedPayload(segment, f"duplicate card {suit}{rank}")
                seen.add((suit, rank))
    return dealer, BridgeDeal(Hands=hands)

@dataclass
class _DecodeState:
    """Accumulator for the segment fold. cursor names the last appended bid or card"""
    players: Optional[List[str]] = None
    dealer: Optional[Direction] = None
    deal: Optional[BridgeDeal] = None
    vulnerability: Vulnerability = Vulnerability.NONE
    board_name: Optional[str] = None
    auction: List[Call] = field(default_factory=list)
    play: List[PlayedCard] = field(default_factory=list)
    claim: Optional[int] = None
    cursor: Optional[Tuple[str, int]] = None

def _on_players(state: _DecodeState, value: str) -> None:
    names = value.split(",")
    state.players = (names + [""] * 4)[:4]

def _on_deal(state: _DecodeState, value: str) -> None:
    if state.deal is not None:
        logger.debug(f"Ignoring repeated md node {value}")
        return
    state.dealer, state.deal = parse_deal(value)

def _on_vulnerability(state: _DecodeState, value: str) -> None:
    key = value.strip().lower()
    if key not in _VUL_MAP:
        raise MalformedPayload(f"sv|{value}", "unknown vulnerability")
    state.vulnerability = _VUL_MAP[key]

def _on_bid(state: _DecodeState, value: str) -> None:
    canonical = canonicalize_bid(value)
    if canonical is None:
        raise MalformedPayload(f"mb|{value}", "unknown bid")
    state.auction.append(Call(canonical[0], alerted=canonical[1]))
    state.cursor = ("mb", len(state.auction) - 1)

def _on_annotation(state: _DecodeState, value: str) -> None:
    if state.cursor is None:
        logger.debug(f"Annotation with nothing to attach to: {value}")
        return
    kind, index = state.cursor
    if kind == "mb":
        state.auction[index].annotation = value
    else:
        state.play[index].annotation = value

def _on_card(state: _DecodeState, value: str) -> None:
    if state.claim is not None:
        return
    try:
        card = Card.from_str(value)
    except ValueError as e:
        raise MalformedPayload(f"pc|{value}", str(e)) from e
    state.play.append(PlayedCard(card))
    state.cursor = ("pc", len(state.play) - 1)

def _on_claim(state: _DecodeState, value: str) -> None:
    try:
        state.claim = int(value.strip())
    except ValueError as e:
        raise MalformedPayload(f"mc|{value}", "claim is not a trick count") from e
    if not 0 <= state.claim <= NCARDS_IN_HAND:
        raise MalformedPayload(f"mc|{value}", f"claim of {state.claim} tricks is out of range")

def _on_board_name(state: _DecodeState, value: str) -> None:
    state.board_name = value.replace("+", " ").strip()

_HANDLERS = {
    "pn": _on_players,
    "md": _on_deal,
    "sv": _on_vulnerability,
    "mb": _on_bid,
    "an": _on_annotation,
    "pc": _on_card,
    "mc": _on_claim,
    "ah": _on_board_name,
}

def _fold(state: _DecodeState, segment: Tuple[str, str]) -> _DecodeState:
    code, value = segment
    handler = _HANDLERS.get(code)
    if handler is not None:
        handler(state, value)
    return state

def _validate_play(deal: BridgeDeal, play: List[PlayedCard]) -> None:
    played: Set[Card] = set()
    for pc in play:
        if pc.card in played:
            raise MalformedPayload(f"pc|{pc.card}", "card played twice")
        if deal.holder(pc.card) is None:
            raise MalformedPayload(f"pc|{pc.card}", "card is not in the deal")
        played.add(pc.card)

def parse_lin(payload: str) -> HandRecord:
    """
    Decode one LIN hand record
    :param payload: The value of the lin= parameter of a BBO hand viewer URL, already percent-decoded
    :return: The decoded HandRecord
    """
    state: _DecodeState = reduce(_fold, split_segments(payload), _DecodeState())
    if state.deal is None or state.dealer is None:
        raise MalformedPayload("md", "no deal in payload")
    _validate_play(state.deal, state.play)
    if state.claim is None and len(state.play) % 4:
        logger.warning(f"Play stops mid-trick after {len(state.play)} cards with no claim"
                       f"{' on ' + state.board_name if state.board_name else ''}")
    names = state.players if state.players is not None else ["South", "West", "North", "East"]
    return HandRecord(
        Players={LIN_SEATS[i]: names[i] for i in range(4)},
        Dealer=state.dealer,
        Vulnerability=state.vulnerability,
        Deal=state.deal,
        Auction=state.auction,
        Play=state.play,
        Claim=state.claim,
        BoardName=state.board_name,
    )

def format_cardplay(record: HandRecord) -> str:
    """Tricks separated by |, cards by -, e.g. D2-DA-D6-D5|S3-S2-SQ-SA"""
    return record.cardplay()
