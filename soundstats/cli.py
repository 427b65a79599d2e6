from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

if __package__ is None:  # Allow running as a script.
    sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from soundstats.db.factory import close_event_store, get_event_store
from soundstats.db.store import StoreError
from soundstats.services.listening_stats import ListeningStatsService
from soundstats.services.models import StatisticsSnapshot, TrackInfo
from soundstats.services.stats_aggregator import (
    StatsAggregator,
    StatsPeriod,
    format_duration,
)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Inspect and record listening statistics.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    snapshot = sub.add_parser("snapshot", help="Print a statistics snapshot.")
    snapshot.add_argument(
        "--period",
        default=StatsPeriod.WEEKLY.value,
        help="weekly, monthly, thisYear or allTime.",
    )
    snapshot.add_argument(
        "--json",
        action="store_true",
        help="Print the full snapshot as JSON.",
    )

    for name, help_text in (
        ("log-play", "Record a counted play."),
        ("log-time", "Record listened seconds."),
    ):
        command = sub.add_parser(name, help=help_text)
        command.add_argument("url", help="Canonical track URL.")
        command.add_argument("--title", required=True)
        command.add_argument("--artist", required=True)
        command.add_argument("--duration", type=float, default=0, help="Track length in seconds.")
        command.add_argument("--artwork", default=None)
        if name == "log-time":
            command.add_argument("seconds", type=float, help="Listened seconds.")

    return parser.parse_args(argv)


def format_summary(snapshot: StatisticsSnapshot) -> str:
    """Render a short plain-text summary of a snapshot."""
    if snapshot.is_empty:
        return f"No listening activity for {snapshot.period} yet."

    lines = [
        f"Period: {snapshot.period} ({snapshot.days_in_period} days)",
        f"Plays: {snapshot.total_plays}",
        f"Listening time: {format_duration(snapshot.total_listening_seconds)}",
        f"Variety: {snapshot.variety_score}%  Obsession: {snapshot.obsession_rate}%  "
        f"Consistency: {snapshot.consistency_score}%",
    ]
    if snapshot.comparison is not None:
        lines.append(f"Plays vs previous period: {snapshot.comparison.plays_change:+.1f}%")
    if snapshot.top_tracks:
        lines.append("Top tracks:")
        for index, track in enumerate(snapshot.top_tracks[:5], start=1):
            lines.append(f"  {index}. {track.artist} - {track.title} ({track.play_count})")
    if snapshot.top_artists:
        lines.append("Top artists:")
        for index, artist in enumerate(snapshot.top_artists[:5], start=1):
            lines.append(f"  {index}. {artist.name} ({artist.play_count})")
    if snapshot.max_repeats is not None:
        repeat = snapshot.max_repeats
        lines.append(f"On repeat: {repeat.artist} - {repeat.title} x{repeat.count}")
    if snapshot.rediscoveries:
        lines.append("Worth rediscovering:")
        for item in snapshot.rediscoveries:
            lines.append(f"  {item.artist} - {item.title} ({item.historical_plays} plays)")
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    try:
        store = get_event_store()
        if args.command == "snapshot":
            snapshot = StatsAggregator(store).compute_snapshot(args.period)
            if args.json:
                print(json.dumps(snapshot.to_dict(), indent=2))
            else:
                print(format_summary(snapshot))
            return 0

        track = TrackInfo(
            url=args.url,
            title=args.title,
            artist=args.artist,
            duration=args.duration,
            artwork=args.artwork,
        )
        service = ListeningStatsService(store)
        if args.command == "log-play":
            service.log_play(track)
            print(f"Logged play: {track.artist} - {track.title}")
        elif service.log_listened_time(track, args.seconds):
            print(f"Logged {args.seconds:.0f}s: {track.artist} - {track.title}")
        else:
            print("Nothing logged: seconds must be positive.")
        return 0
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 2
    except StoreError as e:
        print(f"Couldn't access listening store: {e}", file=sys.stderr)
        return 1
    finally:
        close_event_store()


if __name__ == "__main__":
    raise SystemExit(main())
