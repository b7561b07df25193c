from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Dict, List, Optional
from common_objects import Call, Direction

# Regular expression for valid canonical calls
BID_PATTERN = re.compile(r'^(?:[1-7][CDHSN]|P|X|XX)$')
STRAIN_ORDER = {'C': 0, 'D': 1, 'H': 2, 'S': 3, 'N': 4}

@dataclass
class AuctionResult:
    status: str = "Missing"                 # Legal, Illegal, Corrupt, Incomplete or Missing
    contract: str = ""                      # e.g. 4S, 3NX, 6DXX; "AP" when passed out
    declarer: Optional[Direction] = None
    opener: Optional[Direction] = None

    @property
    def strain(self) -> str:
        return self.contract[1] if len(self.contract) >= 2 and self.contract != "AP" else ""

    @property
    def passed_out(self) -> bool:
        return self.contract == "AP"

def is_legal_bid(last_reg_bid: str, curbid: str) -> bool:
    # Assumes input is a regular bid, not P/X/XX
    return  (last_reg_bid == "") or (curbid[0] > last_reg_bid[0]) or \
            ((curbid[0] == last_reg_bid[0]) and (STRAIN_ORDER[curbid[1]] > STRAIN_ORDER[last_reg_bid[1]]))

def derive_contract(dealer: Direction, calls: List[Call] | List[str]) -> AuctionResult:
    """
    Walk an auction and work out the final contract and declarer.
    Declarer is the first player of the contracting side to name the final strain.
    :param dealer: The direction that made the first call
    :param calls: Canonical calls, as Call objects or bare strings
    """
    bids: List[str] = [c.bid if isinstance(c, Call) else c for c in calls]
    result = AuctionResult()
    if not bids:
        return result

    first_bidder_of_strain: Dict[str, Dict[str, Direction]] = {"NS": {}, "EW": {}}
    cur_contract: str = ""
    cur_side: str = ""
    cur_bidder: Optional[Direction] = None
    premium: str = ""
    consecutive_passes = 0
    complete = False
    current_dir = dealer

    for index, bid in enumerate(bids):
        if not BID_PATTERN.match(bid):
            result.status = "Corrupt"
            return result
        side = current_dir.side()
        if bid == "P":
            consecutive_passes += 1
            if (cur_contract and consecutive_passes == 3) or (not cur_contract and consecutive_passes == 4):
                complete = index == len(bids) - 1
                if not complete:
                    result.status = "Illegal"       # Calls after the auction ended
                    return result
        else:
            consecutive_passes = 0
            if bid == "X":
                if not cur_contract or side == cur_side or premium:
                    result.status = "Illegal"
                    return result
                premium = "X"
            elif bid == "XX":
                if premium != "X" or side != cur_side:
                    result.status = "Illegal"
                    return result
                premium = "XX"
            else:
                if not is_legal_bid(cur_contract, bid):
                    result.status = "Illegal"
                    return result
                cur_contract, cur_side, cur_bidder, premium = bid, side, current_dir, ""
                first_bidder_of_strain[side].setdefault(bid[1], current_dir)
                if result.opener is None:
                    result.opener = current_dir
        current_dir = current_dir.next()

    # An unfinished auction still reports the contract reached so far
    result.status = "Legal" if complete else "Incomplete"
    if not cur_contract:
        result.contract = "AP" if complete else ""
        return result
    result.contract = cur_contract + premium
    result.declarer = first_bidder_of_strain[cur_side].get(cur_contract[1], cur_bidder)
    return result
