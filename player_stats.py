import logging
import polars as pl
from statistics import NormalDist
from typing import List, Dict, Any, Final, Optional, Tuple
from common_objects import BridgeDataError
from lin_parse import parse_lin
from link_resolver import extract_payload
from play_cost import play_seats, resolve_contract, parse_costs
from row_pipeline import LIN_URL_COLUMN, DD_COLUMN, is_completed

logger = logging.getLogger(__name__)

COSTS_SCHEMA = {"Deal": pl.Int64, "Player": pl.String, "Role": pl.String, "Cost": pl.Int64}
ROLE_PREFIXES: Final[Dict[str, str]] = {"declaring": "Decl", "defending": "Def"}
MIN_SAMPLE: Final[int] = 30     # Plays needed before a confidence interval is reported
Z_95: Final[float] = 1.96
FIELD_NAME: Final[str] = "FIELD"
DEFAULT_SUBJECTS: Final[int] = 2

COUNT_COLUMNS: Final[List[str]] = [f"{p}{c}" for p in ROLE_PREFIXES.values() for c in ("Deals", "Plays", "Errors", "Cost")]
STATS_COLUMNS: Final[List[str]] = ["Player", "Deals"] + [
    f"{p}{c}" for p in ROLE_PREFIXES.values()
    for c in ("Deals", "Plays", "Errors", "Cost", "ErrorRate", "AvgCost", "CI95")
] + ["DefMinusDecl", "DiffSE"]

def card_costs_by_player(df: pl.DataFrame) -> pl.DataFrame:
    """
    One row per analyzed card: the deal (row index) it belongs to, who is charged for it,
    in which role, and its DD cost. Dummy's cards are charged to declarer.
    """
    missing = {LIN_URL_COLUMN, DD_COLUMN} - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {missing}")
    records: List[Dict[str, Any]] = []
    skipped = 0
    for index, row in enumerate(df.select([LIN_URL_COLUMN, DD_COLUMN]).iter_rows(named=True)):
        if not is_completed(row[DD_COLUMN]):
            skipped += 1
            continue
        try:
            payload = extract_payload(row[LIN_URL_COLUMN] or "")
            if payload is None:
                skipped += 1
                continue
            record = parse_lin(payload)
            _, declarer, _ = resolve_contract(record)
            seats = play_seats(record)
        except BridgeDataError as e:
            logger.info(f"Skipping row {index + 1} in stats: {e}")
            skipped += 1
            continue
        costs = [cost for trick in parse_costs(row[DD_COLUMN]) for cost in trick]
        for seat, cost in zip(seats, costs):
            declaring = seat.same_side(declarer)
            records.append({
                "Deal": index,
                "Player": record.Players[declarer if declaring else seat].lower(),
                "Role": "declaring" if declaring else "defending",
                "Cost": cost,
            })
    logger.info(f"Collected {len(records)} card costs ({skipped} rows skipped)")
    return pl.DataFrame(records, schema=COSTS_SCHEMA)

def _role_totals(costs: pl.DataFrame, role: str) -> pl.DataFrame:
    prefix = ROLE_PREFIXES[role]
    return (
        costs.filter(pl.col("Role") == role)
        .group_by("Player")
        .agg(
            pl.col("Deal").n_unique().cast(pl.Int64).alias(f"{prefix}Deals"),
            pl.len().cast(pl.Int64).alias(f"{prefix}Plays"),
            (pl.col("Cost") > 0).sum().cast(pl.Int64).alias(f"{prefix}Errors"),
            pl.col("Cost").sum().cast(pl.Int64).alias(f"{prefix}Cost"),
        )
    )

def _error_share(prefix: str) -> pl.Expr:
    return pl.col(f"{prefix}Errors") / pl.col(f"{prefix}Plays")

def _share_variance(prefix: str) -> pl.Expr:
    p = _error_share(prefix)
    return p * (1 - p) / pl.col(f"{prefix}Plays")

def _rate_columns(prefix: str) -> List[pl.Expr]:
    plays = pl.col(f"{prefix}Plays")
    return [
        pl.when(plays > 0).then(_error_share(prefix) * 100).otherwise(None).alias(f"{prefix}ErrorRate"),
        pl.when(plays > 0).then(pl.col(f"{prefix}Cost") / plays).otherwise(None).alias(f"{prefix}AvgCost"),
        pl.when(plays >= MIN_SAMPLE).then(Z_95 * _share_variance(prefix).sqrt() * 100)
        .otherwise(None).alias(f"{prefix}CI95"),
    ]

def _with_rates(frame: pl.DataFrame) -> pl.DataFrame:
    """Add rates, average cost, 95% CI and the defending-minus-declaring difference to count columns"""
    both_sampled = (pl.col("DeclPlays") >= MIN_SAMPLE) & (pl.col("DefPlays") >= MIN_SAMPLE)
    return (
        frame.with_columns(*_rate_columns("Decl"), *_rate_columns("Def"))
        .with_columns(
            (pl.col("DefErrorRate") - pl.col("DeclErrorRate")).alias("DefMinusDecl"),
            pl.when(both_sampled).then((_share_variance("Decl") + _share_variance("Def")).sqrt() * 100)
            .otherwise(None).alias("DiffSE"),
        )
        .select(STATS_COLUMNS)
    )

def summarize_players(costs: pl.DataFrame) -> pl.DataFrame:
    """
    Fold per-card costs into one row per player with declaring and defending deals, plays,
    errors (cards with a positive cost), total and average cost, error rate in percent, and its
    95% confidence half-width once a role has at least MIN_SAMPLE plays.
    DefMinusDecl is how much more often the player errs on defence than as declarer; DiffSE is
    its standard error, again only with MIN_SAMPLE plays on both sides.
    Sorted by total deals, most active first.
    """
    costs = costs.filter(pl.col("Player") != "")
    players = _role_totals(costs, "declaring").join(
        _role_totals(costs, "defending"), on="Player", how="full", coalesce=True)
    players = players.with_columns([pl.col(c).fill_null(0) for c in COUNT_COLUMNS])
    players = players.with_columns((pl.col("DeclDeals") + pl.col("DefDeals")).alias("Deals"))
    return _with_rates(players).sort(["Deals", "Player"], descending=[True, False])

def field_baseline(stats: pl.DataFrame, subjects: int = DEFAULT_SUBJECTS) -> pl.DataFrame:
    """
    Pool everyone except the `subjects` most active players into a single FIELD row
    to compare those players against.
    """
    rest = stats.sort(["Deals", "Player"], descending=[True, False]).slice(subjects)
    totals = rest.select([pl.col(c).sum().cast(pl.Int64) for c in COUNT_COLUMNS])
    totals = totals.with_columns(
        pl.lit(FIELD_NAME).alias("Player"),
        (pl.col("DeclDeals") + pl.col("DefDeals")).alias("Deals"),
    )
    return _with_rates(totals)

def _lower_tail(z: Optional[float]) -> Optional[float]:
    return None if z is None else NormalDist().cdf(z)

def compare_to_field(stats: pl.DataFrame, field: pl.DataFrame) -> pl.DataFrame:
    """
    Two-sample z-test of each player's DefMinusDecl against the field's.
    PValue is the one-sided probability of a difference this far below the field's by chance,
    so a small value means the player's defence holds up unusually well next to their declaring.
    """
    base = field.row(0, named=True)
    if base["DefMinusDecl"] is None or base["DiffSE"] is None:
        z = pl.lit(None, dtype=pl.Float64)
    else:
        spread = (pl.col("DiffSE") ** 2 + base["DiffSE"] ** 2).sqrt()
        z = pl.when(spread > 0).then((pl.col("DefMinusDecl") - base["DefMinusDecl"]) / spread).otherwise(None)
    compared = stats.with_columns(z.alias("Z"))
    return compared.with_columns(
        pl.Series("PValue", [_lower_tail(v) for v in compared["Z"].to_list()], dtype=pl.Float64))

def player_error_stats(df: pl.DataFrame, subjects: int = DEFAULT_SUBJECTS) -> Tuple[pl.DataFrame, pl.DataFrame]:
    """
    :param df: Output of analyze-dd
    :param subjects: How many of the most active players are left out of the field baseline
    :return: (per-player table with Z and PValue against the field, the one-row FIELD table)
    """
    players = summarize_players(card_costs_by_player(df))
    field = field_baseline(players, subjects)
    return compare_to_field(players, field), field
