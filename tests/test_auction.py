"""Tests for auction processing module."""

import pytest
import sys
from pathlib import Path

# Add parent directory to path so we can import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from auction import derive_contract, is_legal_bid
from common_objects import Direction, Call


def calls(text):
    return text.split("-") if text else []


class TestDeriveContract:
    """Tests for derive_contract function."""

    def test_all_pass(self):
        """Test all-pass auction."""
        result = derive_contract(Direction.NORTH, calls("P-P-P-P"))
        assert result.contract == "AP"
        assert result.passed_out
        assert result.opener is None
        assert result.status == "Legal"

    def test_simple_auction(self):
        """Test simple 1C-P-1H-P-1N auction."""
        result = derive_contract(Direction.NORTH, calls("1C-P-1H-P-1N-P-P-P"))
        assert result.contract == "1N"
        assert result.opener == Direction.NORTH
        assert result.declarer == Direction.NORTH
        assert result.strain == "N"
        assert result.status == "Legal"

    def test_declarer_is_first_to_name_strain(self):
        """Partner raised, but opener named spades first."""
        result = derive_contract(Direction.SOUTH, calls("1S-P-3S-P-4S-P-P-P"))
        assert result.contract == "4S"
        assert result.declarer == Direction.SOUTH

    def test_declarer_for_responder(self):
        result = derive_contract(Direction.EAST, calls("1C-P-1H-P-4H-P-P-P"))
        assert result.declarer == Direction.WEST

    def test_doubled_contract(self):
        """Test doubled contract."""
        result = derive_contract(Direction.NORTH, calls("1S-P-P-X-P-P-P"))
        assert result.contract == "1SX"
        assert result.status == "Legal"

    def test_redoubled_contract(self):
        """Test redoubled contract."""
        result = derive_contract(Direction.NORTH, calls("1D-X-XX-P-P-P"))
        assert result.contract == "1DXX"
        assert result.status == "Legal"

    def test_illegal_double(self):
        """Test illegal double (doubling own side)."""
        result = derive_contract(Direction.NORTH, calls("1C-P-X-P-P-P"))
        assert result.status == "Illegal"

    def test_insufficient_bid(self):
        result = derive_contract(Direction.NORTH, calls("1S-1H-P-P-P"))
        assert result.status == "Illegal"

    def test_calls_after_end(self):
        result = derive_contract(Direction.NORTH, calls("1S-P-P-P-2C"))
        assert result.status == "Illegal"

    def test_corrupt_call(self):
        result = derive_contract(Direction.NORTH, calls("1S-P-8C-P"))
        assert result.status == "Corrupt"

    def test_incomplete_keeps_contract(self):
        result = derive_contract(Direction.WEST, calls("1N-P-3N"))
        assert result.status == "Incomplete"
        assert result.contract == "3N"
        assert result.declarer == Direction.WEST

    def test_missing(self):
        result = derive_contract(Direction.NORTH, [])
        assert result.status == "Missing"
        assert result.contract == ""

    def test_call_objects(self):
        result = derive_contract(Direction.EAST, [Call("2H", alerted=True), Call("P"), Call("P"), Call("P")])
        assert result.contract == "2H"
        assert result.declarer == Direction.EAST


class TestBidLegality:

    @pytest.mark.parametrize("last,cur,legal", [
        ("", "1C", True),
        ("1C", "1D", True),
        ("1N", "1S", False),
        ("1N", "2C", True),
        ("3H", "3H", False),
    ])
    def test_is_legal_bid(self, last, cur, legal):
        assert is_legal_bid(last, cur) == legal
