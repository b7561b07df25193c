import logging
import cProfile
import os
import pstats
import sys
import polars as pl
from line_profiler import LineProfiler
from pathlib import Path
from argparse import ArgumentParser, Namespace
from common_objects import lineProf
from fetch_scheduler import FetchConfig
from row_pipeline import fetch_cardplay, analyze_dd, read_rows, DEFAULT_KEY_COLUMN, DEFAULT_URL_COLUMN
from row_pipeline import DEFAULT_ENCODING
from player_stats import player_error_stats, DEFAULT_SUBJECTS
from hand_display import display_hand
from anonymize import Anonymizer, anonymize_csv, ANON_KEY_ENV, DEFAULT_NAME_COLUMNS

def _build_parser() -> ArgumentParser:
    arg_list = ArgumentParser(description="Fetch BBO cardplay for hand links and score it double-dummy")
    arg_list.add_argument("--profile", action="store_true", help="Enable performance profiling")
    arg_list.add_argument("-v", "--verbose", action="store_true", help="Log progress at INFO level")
    commands = arg_list.add_subparsers(dest="command", required=True)

    fetch = commands.add_parser("fetch-cardplay", help="Pass 1: resolve links and add Cardplay and LIN_URL columns")
    fetch.add_argument("--input", required=True, help="Input CSV with a column of hand links")
    fetch.add_argument("--output", required=True, help="Output CSV")
    fetch.add_argument("--url-column", default=DEFAULT_URL_COLUMN, help="Column holding the links")
    fetch.add_argument("--key-column", default=DEFAULT_KEY_COLUMN, help="Column identifying each row")
    fetch.add_argument("--encoding", default=DEFAULT_ENCODING, help="Encoding of the input CSV")
    fetch.add_argument("--config", help="ini file with a [fetch] section; command line values override it")
    fetch.add_argument("--delay-ms", type=int, help="Delay between requests")
    fetch.add_argument("--batch-size", type=int, help="Requests per batch")
    fetch.add_argument("--batch-delay-ms", type=int, help="Extra delay after each batch")
    fetch.add_argument("--max-attempts", type=int, help="Attempts per link on transient failures")
    fetch.add_argument("--backoff-ms", type=int, help="First retry delay, doubled per retry")
    fetch.add_argument("--resume", action="store_true", help="Skip rows already fetched in the output")

    dd = commands.add_parser("analyze-dd", help="Pass 2: add per-card double-dummy cost column")
    dd.add_argument("--input", required=True, help="Output of fetch-cardplay")
    dd.add_argument("--output", required=True, help="Output CSV")
    dd.add_argument("--key-column", default=DEFAULT_KEY_COLUMN, help="Column identifying each row")
    dd.add_argument("--encoding", default=DEFAULT_ENCODING, help="Encoding of the input CSV")
    dd.add_argument("--resume", action="store_true", help="Skip rows already analyzed in the output")

    stats = commands.add_parser("stats", help="Per-player error rates from an analyze-dd output")
    stats.add_argument("--input", required=True, help="Output of analyze-dd")
    stats.add_argument("--output", help="Write the table, FIELD row last, to this CSV instead of printing it")
    stats.add_argument("--top-n", type=int, default=10, help="Players to print")
    stats.add_argument("--subjects", type=int, default=DEFAULT_SUBJECTS,
                       help="Most active players left out of the FIELD baseline")
    stats.add_argument("--encoding", default=DEFAULT_ENCODING, help="Encoding of the input CSV")

    hand = commands.add_parser("display-hand", help="Show one row's deal, play and per-card DD cost")
    hand.add_argument("--input", required=True, help="Output of fetch-cardplay or analyze-dd")
    hand.add_argument("-n", "--row", type=int, required=True, help="Data row to show, starting at 1")
    hand.add_argument("--key-column", default=DEFAULT_KEY_COLUMN, help="Column identifying each row")
    hand.add_argument("--encoding", default=DEFAULT_ENCODING, help="Encoding of the input CSV")

    anon = commands.add_parser("anonymize", help="Replace player usernames with stable made-up names")
    anon.add_argument("--input", required=True, help="CSV to anonymize")
    anon.add_argument("--output", required=True, help="Output CSV")
    anon.add_argument("--key", default=os.environ.get(ANON_KEY_ENV),
                      help=f"Secret for the name hash; defaults to ${ANON_KEY_ENV}")
    anon.add_argument("--map", default="", help="Fixed replacements, e.g. alice=Pro_One,bob=Pro_Two")
    anon.add_argument("--columns", default=",".join(DEFAULT_NAME_COLUMNS), help="Comma-separated name columns")
    anon.add_argument("--repair-quotes", action="store_true", help="Input is a raw BBO export")
    anon.add_argument("--encoding", default=DEFAULT_ENCODING, help="Encoding of the input CSV")
    return arg_list

def _fetch_config(args: Namespace) -> FetchConfig:
    config = FetchConfig.from_config_file(Path(args.config)) if args.config else FetchConfig()
    overrides = {
        "delay_ms": args.delay_ms,
        "batch_size": args.batch_size,
        "batch_delay_ms": args.batch_delay_ms,
        "max_attempts": args.max_attempts,
        "backoff_ms": args.backoff_ms,
    }
    values = {**config.__dict__, **{k: v for k, v in overrides.items() if v is not None}}
    if args.resume:
        values["resume"] = True
    return FetchConfig(**values)

def _main_impl(lp: LineProfiler, argv=None) -> int:
    args = _build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    try:
        if args.command == "fetch-cardplay":
            summary = fetch_cardplay(Path(args.input), Path(args.output), _fetch_config(args),
                                     url_column=args.url_column, key_column=args.key_column,
                                     encoding=args.encoding)
            print(summary)
        elif args.command == "analyze-dd":
            from dds_wrapper import EndplaySolver
            summary = analyze_dd(Path(args.input), Path(args.output), EndplaySolver(),
                                 resume=args.resume, key_column=args.key_column, encoding=args.encoding)
            print(summary)
        elif args.command == "stats":
            players, field = player_error_stats(read_rows(Path(args.input), encoding=args.encoding),
                                                subjects=args.subjects)
            if args.output:
                pl.concat([players, field], how="diagonal").write_csv(args.output)
            else:
                with pl.Config(tbl_rows=args.top_n + 1, tbl_cols=-1):
                    print(players.head(args.top_n))
                    print(field)
        elif args.command == "display-hand":
            print(display_hand(Path(args.input), args.row, key_column=args.key_column, encoding=args.encoding))
        elif args.command == "anonymize":
            anonymizer = Anonymizer(args.key or "", Anonymizer.parse_mapping(args.map))
            columns = [c.strip() for c in args.columns.split(",") if c.strip()]
            rows = anonymize_csv(Path(args.input), Path(args.output), anonymizer, columns=columns,
                                 repair_quotes=args.repair_quotes, encoding=args.encoding)
            print(f"{rows} rows: {anonymizer.explicit_count} explicit, {anonymizer.generated_count} generated names")
    except Exception as e:
        logging.error(f"Error during processing: {str(e)}")
        return 1
    return 0

def main() -> None:
    """Entry point for the bbo-cardplay console script."""
    logging.basicConfig(level=logging.WARNING, format='%(asctime)s - %(levelname)s - %(message)s')
    logging.warning("Starting")
    if '--profile' in sys.argv:
        # Set up profiling
        profiler = cProfile.Profile()
        profiler.enable()
        lineProf.add_function(_main_impl)
        namespace = {'lineProf': lineProf, '_main_impl': _main_impl}
        lineProf.runctx('status = _main_impl(lineProf)', globals(), namespace)
        lineProf.print_stats()
        profiler.disable()
        stats = pstats.Stats(profiler)
        stats.strip_dirs().sort_stats('time').print_stats(10)  # Top 10 functions sorted by time
        status = namespace['status']
    else:
        status = _main_impl(lineProf)
    logging.warning("Finished")
    sys.exit(status)

if __name__ == "__main__":
    main()
