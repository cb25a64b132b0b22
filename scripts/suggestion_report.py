"""Compute suggestions for every user in a directory CSV and render a report.

Reads the users/profiles CSV (and optionally the match records CSV), builds
suggestions for each non-deleted user that has a profile, and produces:

- A flattened CSV with one row per (user, suggested partner)
- A Markdown report suitable for quick human review

Provider enrichment runs only with ``--ai`` and an API key in the environment.
"""

from __future__ import annotations

import argparse
import json
from datetime import datetime
from pathlib import Path
from typing import Any, List

import pandas as pd
from dotenv import load_dotenv

from studymatch.engine import MatchingEngine
from studymatch.ingest import load_directory, load_matches
from studymatch.main import configure_logging
from studymatch.settings import SettingsStore, load_settings
from studymatch.stores import InMemoryMatchStore, InMemoryTelemetrySink


REPORT_COLUMNS = [
    "user_id",
    "user_name",
    "rank",
    "partner_id",
    "partner_name",
    "score",
    "base_score",
    "ai_enhanced",
    "reason",
    "study_recommendations",
]


def build_report_rows(engine: MatchingEngine, user_ids: List[str], names: dict) -> pd.DataFrame:
    """One row per suggestion, users in the order given.

    Args:
        engine: Engine wired over the loaded directory.
        user_ids: Users to build suggestions for; each must have a profile.
        names: user id -> display name.

    Returns:
        DataFrame with ``REPORT_COLUMNS``.
    """
    rows = []
    for user_id in user_ids:
        for rank, s in enumerate(engine.get_suggestions(user_id), start=1):
            rows.append(
                {
                    "user_id": user_id,
                    "user_name": names.get(user_id, user_id),
                    "rank": rank,
                    "partner_id": s.partner.user_id,
                    "partner_name": s.partner.display_name,
                    "score": s.score,
                    "base_score": s.base_score,
                    "ai_enhanced": s.ai_enhanced,
                    "reason": s.reason,
                    "study_recommendations": json.dumps(s.study_recommendations, ensure_ascii=False),
                }
            )
    return pd.DataFrame(rows, columns=REPORT_COLUMNS)


def render_markdown(report_df: pd.DataFrame, out_path_md: Path) -> None:
    """Render a human-readable Markdown report, one section per user."""
    lines: List[str] = []
    ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    lines.append("# Study Partner Suggestions\n")
    lines.append(f"Generated: {ts}\n")
    lines.append(f"Users: {report_df['user_id'].nunique() if len(report_df) else 0}")
    lines.append(f"Total suggestions: {len(report_df)}\n")

    def parse_recommendations(s: Any) -> List[str]:
        if isinstance(s, str) and s.strip().startswith("["):
            return [str(x) for x in json.loads(s)]
        return []

    for user_id, group in report_df.groupby("user_id", sort=False):
        lines.append(f"## {group.iloc[0]['user_name']} ({user_id})\n")
        for _, row in group.iterrows():
            marker = " (AI)" if row["ai_enhanced"] else ""
            lines.append(
                f"{int(row['rank'])}. **{row['partner_name']}** - score {int(row['score'])}"
                f" (base {int(row['base_score'])}){marker}"
            )
            lines.append(f"   {row['reason']}")
            topics = parse_recommendations(row["study_recommendations"])
            if topics:
                lines.append(f"   Study together: {', '.join(topics)}")
        lines.append("")

    out_path_md.parent.mkdir(parents=True, exist_ok=True)
    out_path_md.write_text("\n".join(lines), encoding="utf-8")


def main() -> None:
    parser = argparse.ArgumentParser(description="Build study partner suggestions for every user and render a report")
    parser.add_argument("--users", type=Path, required=True, help="Users/profiles CSV")
    parser.add_argument("--matches", type=Path, default=None, help="Existing match records CSV")
    parser.add_argument("--out-dir", type=Path, default=Path("reports"), help="Output directory")
    parser.add_argument("--ai", action="store_true", help="Enrich shortlists through the provider")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args()

    load_dotenv()
    configure_logging(args.log_level)

    print(f"[1/3] Loading directory: {args.users}")
    users, profiles = load_directory(args.users)
    matches = load_matches(args.matches) if args.matches else InMemoryMatchStore()

    settings = SettingsStore(load_settings(dotenv=False))
    if not args.ai:
        settings.set_ai_enabled(False)
    telemetry = InMemoryTelemetrySink()
    engine = MatchingEngine(users, profiles, matches, settings=settings, telemetry=telemetry)

    user_ids = [u.id for u in users.all() if not u.deleted and profiles.get(u.id) is not None]
    names = {u.id: u.display_name for u in users.all()}
    print(f"[2/3] Building suggestions for {len(user_ids)} users…")
    report = build_report_rows(engine, user_ids, names)

    args.out_dir.mkdir(parents=True, exist_ok=True)
    out_csv = args.out_dir / "suggestions.csv"
    report.to_csv(out_csv, index=False)
    print(f"Writing suggestions CSV: {out_csv}")

    out_md = args.out_dir / "suggestions_report.md"
    print(f"[3/3] Rendering Markdown report: {out_md}")
    render_markdown(report, out_md)
    if telemetry.records:
        print(f"Provider tokens used: {sum(r.total_tokens for r in telemetry.records)}")
    print("Done.")


if __name__ == "__main__":
    main()
