from pathlib import Path
from typing import List, Optional
from common_objects import HandRecord, Direction, AnalysisUnavailable, SUITS
from lin_parse import parse_lin
from link_resolver import extract_payload
from play_cost import resolve_contract, play_seats, parse_costs
from row_pipeline import read_rows, is_completed, CARDPLAY_COLUMN, LIN_URL_COLUMN, DD_COLUMN, DEFAULT_KEY_COLUMN
from row_pipeline import DEFAULT_ENCODING

DISPLAY_ORDER: List[Direction] = [Direction.NORTH, Direction.EAST, Direction.SOUTH, Direction.WEST]

def _holding_line(record: HandRecord, seat: Direction) -> str:
    holdings = "  ".join(f"{suit} {holding or '-'}" for suit, holding in zip(SUITS, record.Deal.Hands[seat]))
    return f"  {seat.name.title():<6}{record.Players[seat]:<18}{holdings}"

def _role(seat: Direction, declarer: Direction) -> str:
    if seat == declarer:
        return "declarer"
    if seat == declarer.partner():
        return "dummy"
    return "defender"

def render_hand(record: HandRecord, costs: Optional[List[List[int]]] = None, title: str = "") -> str:
    """
    Plain-text view of one deal for spot-checking: contract, hands, the play trick by trick
    with each card's DD cost in brackets when it is non-zero, and per-seat totals.
    :param costs: Per-trick costs as returned by parse_costs, or None if the row was not analyzed
    """
    lines: List[str] = [title] if title else []
    try:
        _, declarer, contract = resolve_contract(record)
    except AnalysisUnavailable as e:
        declarer = None
        lines.append(f"Contract: none ({e})")
    else:
        dummy = declarer.partner()
        lines.append(f"Contract: {contract} by {declarer.name.title()} ({record.Players[declarer]}), "
                     f"dummy {dummy.name.title()} ({record.Players[dummy]})")
    lines.append(f"Dealer: {record.Dealer.name.title()}, vulnerable: {record.Vulnerability.name}")
    lines.append(f"Deal: {record.Deal.to_pbn(record.Dealer)}")
    lines.extend(_holding_line(record, seat) for seat in DISPLAY_ORDER)

    if not record.Play:
        lines.append("No cardplay")
        return "\n".join(lines)
    if declarer is None:
        lines.append(f"Cardplay: {record.cardplay()}")
        return "\n".join(lines)

    seats = play_seats(record)
    flat = [c for trick in costs for c in trick] if costs else []
    lines.append("Cardplay:")
    for n, start in enumerate(range(0, len(record.Play), 4)):
        cells = []
        for i in range(start, min(start + 4, len(record.Play))):
            cell = f"{seats[i].abbreviation()}:{record.Play[i].card}"
            if i < len(flat) and flat[i] > 0:
                cell += f" [{flat[i]}]"
            cells.append(f"{cell:<10}")
        lines.append(f"  {n + 1:>2}  " + "".join(cells).rstrip())
    if record.Claim is not None:
        lines.append(f"Claim: {record.Claim} tricks")

    if costs:
        lines.append("DD cost by seat:")
        for seat in DISPLAY_ORDER:
            seat_costs = [cost for s, cost in zip(seats, flat) if s == seat]
            errors = sum(1 for cost in seat_costs if cost > 0)
            lines.append(f"  {seat.name.title():<6}{_role(seat, declarer):<9}plays {len(seat_costs):>2}  "
                         f"errors {errors:>2}  cost {sum(seat_costs):>2}")
    return "\n".join(lines)

def display_hand(input_path: Path, row_number: int, key_column: str = DEFAULT_KEY_COLUMN,
                 encoding: str = DEFAULT_ENCODING) -> str:
    """
    Render one row of a fetch-cardplay or analyze-dd output.
    :param row_number: 1-based data row, as a spreadsheet would number it below the header
    """
    df = read_rows(input_path, encoding=encoding)
    if not 1 <= row_number <= df.height:
        raise ValueError(f"Row {row_number} is out of range, {input_path.name} has {df.height} rows")
    if LIN_URL_COLUMN not in df.columns:
        raise ValueError(f"{input_path.name} has no {LIN_URL_COLUMN} column; run fetch-cardplay first")
    row = df.row(row_number - 1, named=True)
    payload = extract_payload(row[LIN_URL_COLUMN] or "")
    if payload is None:
        raise ValueError(f"Row {row_number} has no LIN payload: {row.get(CARDPLAY_COLUMN) or 'nothing fetched'}")
    record = parse_lin(payload)

    analysis = row.get(DD_COLUMN)
    key = row.get(key_column)
    title = f"Hand #{row_number}" + (f" (Ref: {key})" if key else "")
    text = render_hand(record, parse_costs(analysis) if is_completed(analysis) else None, title)
    if analysis and not is_completed(analysis):
        text += f"\nDD analysis unavailable: {analysis}"
    return text
