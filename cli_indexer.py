import argparse
import logging
import sqlite3
import sys
import time
from pathlib import Path

from fontnames import scan_dir, update
from fontnames_config import AppConfig, IndexConfig
from fontnames_store import FontNamesStore

logger = logging.getLogger(__name__)

QUIET = logging.CRITICAL + 10


def print_progress(current, total):
    """Text-based progress bar for the console."""
    if total == 0:
        return
    percent = (current / total) * 100
    bar_length = 40
    filled_length = int(bar_length * current // total)
    bar = "█" * filled_length + "-" * (bar_length - filled_length)

    # \r moves the cursor back to the start of the line
    sys.stdout.write(f"\rIndexing: |{bar}| {percent:.1f}% ({current}/{total})")
    sys.stdout.flush()
    if current == total:
        print()


def setup_logging(verbosity: int):
    """Map the 0-4 verbosity scale onto logging levels."""
    if verbosity <= 0:
        level = QUIET
    elif verbosity == 1:
        level = logging.WARNING
    elif verbosity == 2:
        level = logging.INFO
    else:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(message)s", force=True)
    # fontTools is chatty at DEBUG, only let it through at the highest level
    logging.getLogger("fontTools").setLevel(
        logging.DEBUG if verbosity >= 4 else max(level, logging.WARNING)
    )


def build_parser(default_level: int) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="fontnames - Update the font names database"
    )

    # Optional: Custom DB path
    parser.add_argument(
        "--db",
        type=str,
        help="Path to the SQLite database file. (Default: in the user config directory)",
    )
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Rebuild the database from scratch",
    )
    parser.add_argument(
        "--log-level",
        type=int,
        choices=range(5),
        default=default_level,
        help="Verbosity from 0 (silent) to 4 (everything)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        dest="log_level",
        action="store_const",
        const=3,
        help="Show every loaded font",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        dest="log_level",
        action="store_const",
        const=0,
        help="Print nothing",
    )
    parser.add_argument(
        "--scan-dir",
        action="append",
        default=[],
        metavar="DIR",
        help="Additional directory to index with full paths (repeatable)",
    )
    parser.add_argument(
        "-r",
        "--recursive",
        action="store_true",
        help="Descend into subdirectories of --scan-dir",
    )
    parser.add_argument(
        "--find",
        metavar="NAME",
        help="Look up a font by family, full or PostScript name and exit",
    )
    return parser


def find_font(store: FontNamesStore, name: str, quiet: bool) -> int:
    matches = store.search_by_font(name)
    if not matches:
        if not quiet:
            print(f"No font found for '{name}'")
        return 1
    if not quiet:
        for filename, face_index in matches:
            if face_index is not None:
                print(f"{filename} (face {face_index})")
            else:
                print(filename)
    return 0


def main(argv=None) -> int:
    app_config = AppConfig()
    parser = build_parser(app_config.get_log_level())
    args = parser.parse_args(argv)

    # 1. Setup Logging
    setup_logging(args.log_level)
    quiet = args.log_level == 0

    # 2. Resolve Paths
    db_path = Path(args.db).absolute() if args.db else app_config.get_db_path()

    # 3. Initialize Database
    try:
        store = FontNamesStore(db_path)
        if args.find:
            return find_font(store, args.find, quiet)
        database = store.load()
    except (sqlite3.Error, OSError) as e:
        logger.error("Database Error: %s", e)
        return 1

    if not quiet:
        print("Starting index update...")
        print(f"Database Path:    {db_path}")
        print("-" * 30)

    progress = print_progress if args.log_level == 1 else None

    # 4. Run Scan
    start_time = time.time()
    try:
        config = IndexConfig.from_env()
        database = update(
            database, force=args.force, config=config, progress_callback=progress
        )
        for scan_path in args.scan_dir:
            if not Path(scan_path).is_dir():
                logger.warning("Path is not a directory: %s", scan_path)
                continue
            database = scan_dir(
                Path(scan_path).absolute(),
                database,
                recursive=args.recursive,
                managed_tree=False,
                system=config.system,
            )
        store.save(database)
    except KeyboardInterrupt:
        if not quiet:
            print("\n\nIndexing cancelled by user.")
        return 1
    except sqlite3.Error as e:
        logger.exception("Database Error: %s", e)
        return 1

    elapsed = time.time() - start_time

    # 5. Report Stats
    if not quiet:
        print("-" * 30)
        print("Scan Complete!")
        print(f"Time Elapsed:    {elapsed:.2f} seconds")
        print(f"Files Indexed:   {len(database.checksums)}")
        print(f"Faces:           {len(database.mappings)}")
        print(f"Families:        {len(database.families)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
