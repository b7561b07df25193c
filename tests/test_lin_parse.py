"""Tests for LIN decoding."""

import logging
import pytest
import sys
from pathlib import Path

# Add parent directory to path so we can import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from lin_parse import parse_lin, parse_deal, split_segments, canonicalize_bid, format_cardplay
from common_objects import Direction, Vulnerability, Card, MalformedPayload

SOUTH_HAND = "S7643HAKQT43DA74C"
WEST_HAND = "SAKQHJ98DKQJC5432"
NORTH_HAND = "SJT9H765DT98CAKQJ"
EAST_HAND = "S852H2D6532CT9876"
FULL_DEAL = ",".join([SOUTH_HAND, WEST_HAND, NORTH_HAND, EAST_HAND])

EXAMPLE = f"pn|South,West,North,East|md|3{FULL_DEAL}|sv|o|mb|1C!|an|could be short|pc|D2|mc|10|"


class TestExamplePayload:
    """The documented example decodes field by field."""

    def test_players(self):
        record = parse_lin(EXAMPLE)
        assert [record.Players[d] for d in (Direction.SOUTH, Direction.WEST, Direction.NORTH, Direction.EAST)] == \
            ["South", "West", "North", "East"]

    def test_vulnerability(self):
        assert parse_lin(EXAMPLE).Vulnerability == Vulnerability.NONE

    def test_auction(self):
        record = parse_lin(EXAMPLE)
        assert len(record.Auction) == 1
        assert record.Auction[0].bid == "1C"
        assert record.Auction[0].alerted
        assert record.Auction[0].annotation == "could be short"

    def test_play_and_claim(self):
        record = parse_lin(EXAMPLE)
        assert [pc.card for pc in record.Play] == [Card.from_str("D2")]
        assert record.Play[0].annotation is None
        assert record.Claim == 10

    def test_dealer_and_hands(self):
        record = parse_lin(EXAMPLE)
        assert record.Dealer == Direction.NORTH
        assert record.Deal.Hands[Direction.SOUTH] == ["7643", "AKQT43", "A74", ""]
        assert record.Deal.Hands[Direction.EAST] == ["852", "2", "6532", "T9876"]

    def test_deterministic(self):
        assert parse_lin(EXAMPLE) == parse_lin(EXAMPLE)


class TestDealDecoding:
    """Tests for the md node."""

    def test_dealer_digits(self):
        assert parse_deal("1" + FULL_DEAL)[0] == Direction.SOUTH
        assert parse_deal("2" + FULL_DEAL)[0] == Direction.WEST
        assert parse_deal("4" + FULL_DEAL)[0] == Direction.EAST

    def test_52_distinct_cards(self):
        _, deal = parse_deal("3" + FULL_DEAL)
        cards = [c for d in Direction for c in deal.cards(d)]
        assert len(cards) == 52
        assert len(set(cards)) == 52

    def test_missing_fourth_hand_completed(self):
        _, deal = parse_deal("3" + ",".join([SOUTH_HAND, WEST_HAND, NORTH_HAND]) + ",")
        assert deal.Hands[Direction.EAST] == ["852", "2", "6532", "T9876"]

    def test_ten_as_two_chars(self):
        _, deal = parse_deal("3" + FULL_DEAL.replace("HAKQT43", "HAKQ1043"))
        assert deal.Hands[Direction.SOUTH][1] == "AKQT43"

    def test_short_hand(self):
        with pytest.raises(MalformedPayload):
            parse_deal("3" + FULL_DEAL.replace("S7643", "S764"))

    def test_duplicate_card(self):
        # South and East both hold S8
        with pytest.raises(MalformedPayload):
            parse_deal("3" + FULL_DEAL.replace("S7643", "S7648"))

    def test_two_hands_missing(self):
        with pytest.raises(MalformedPayload):
            parse_deal("3" + ",".join([SOUTH_HAND, WEST_HAND]))

    def test_bad_dealer(self):
        with pytest.raises(MalformedPayload):
            parse_deal("5" + FULL_DEAL)

    def test_bad_character(self):
        with pytest.raises(MalformedPayload):
            parse_deal("3" + FULL_DEAL.replace("S7643", "S76Z3"))


class TestMalformedPayloads:
    """Structurally invalid payloads raise MalformedPayload."""

    def test_no_deal(self):
        with pytest.raises(MalformedPayload):
            parse_lin("pn|a,b,c,d|sv|o|mb|1C|")

    def test_unknown_vulnerability(self):
        with pytest.raises(MalformedPayload) as exc:
            parse_lin(f"md|3{FULL_DEAL}|sv|q|")
        assert exc.value.segment == "sv|q"

    def test_unknown_bid(self):
        with pytest.raises(MalformedPayload):
            parse_lin(f"md|3{FULL_DEAL}|mb|8C|")

    def test_card_played_twice(self):
        with pytest.raises(MalformedPayload):
            parse_lin(f"md|3{FULL_DEAL}|pc|D2|pc|D2|")

    def test_invalid_card(self):
        with pytest.raises(MalformedPayload):
            parse_lin(f"md|3{FULL_DEAL}|pc|Z9|")

    def test_dangling_code(self):
        with pytest.raises(MalformedPayload):
            parse_lin(f"md|3{FULL_DEAL}|sv")

    def test_bad_claim(self):
        with pytest.raises(MalformedPayload):
            parse_lin(f"md|3{FULL_DEAL}|mc|lots|")

    @pytest.mark.parametrize("claim", ["14", "-1"])
    def test_claim_out_of_range(self, claim):
        with pytest.raises(MalformedPayload):
            parse_lin(f"md|3{FULL_DEAL}|mc|{claim}|")


class TestDecoderDetails:

    def test_split_segments(self):
        assert split_segments("pn|a,b|SV|o|") == [("pn", "a,b"), ("sv", "o")]

    @pytest.mark.parametrize("raw,expected", [
        ("1c", ("1C", False)),
        ("3NT", ("3N", False)),
        ("p", ("P", False)),
        ("d", ("X", False)),
        ("r", ("XX", False)),
        ("2H!", ("2H", True)),
        ("9S", None),
    ])
    def test_canonicalize_bid(self, raw, expected):
        assert canonicalize_bid(raw) == expected

    def test_annotation_follows_last_element(self):
        record = parse_lin(f"md|3{FULL_DEAL}|mb|1N|an|15-17|mb|p|pc|D2|an|fourth best|")
        assert record.Auction[0].annotation == "15-17"
        assert record.Auction[1].annotation is None
        assert record.Play[0].annotation == "fourth best"

    def test_unknown_codes_ignored(self):
        record = parse_lin(f"qx|o1|rh||md|3{FULL_DEAL}|st||nt|hello|pg||mb|p|")
        assert [c.bid for c in record.Auction] == ["P"]

    def test_cards_after_claim_ignored(self):
        record = parse_lin(f"md|3{FULL_DEAL}|pc|D2|mc|12|pc|DA|")
        assert len(record.Play) == 1
        assert record.Claim == 12

    def test_board_name(self):
        assert parse_lin(f"ah|Board+7|md|3{FULL_DEAL}|").BoardName == "Board 7"

    def test_default_players(self):
        record = parse_lin(f"md|3{FULL_DEAL}|")
        assert record.Players[Direction.NORTH] == "North"

    def test_format_cardplay(self):
        payload = f"md|3{FULL_DEAL}|pc|CT|pc|S3|pc|C2|pc|CA|pc|CK|pc|C6|"
        assert format_cardplay(parse_lin(payload)) == "CT-S3-C2-CA|CK-C6"

    def test_mid_trick_without_claim_warns(self, caplog):
        with caplog.at_level(logging.WARNING):
            record = parse_lin(f"ah|Board+3|md|3{FULL_DEAL}|pc|CT|pc|S3|")
        assert len(record.Play) == 2
        assert "mid-trick after 2 cards" in caplog.text
        assert "Board 3" in caplog.text

    def test_complete_tricks_or_claim_do_not_warn(self, caplog):
        with caplog.at_level(logging.WARNING):
            parse_lin(f"md|3{FULL_DEAL}|pc|CT|pc|S3|pc|C2|pc|CA|")
            parse_lin(f"md|3{FULL_DEAL}|pc|CT|pc|S3|mc|9|")
        assert "mid-trick" not in caplog.text
