from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple

import typer
from rich import print
from rich.logging import RichHandler
from rich.table import Table

from .engine import MatchingEngine
from .errors import MatchingError, ProfileNotFoundError
from .ingest import load_directory, load_matches, save_matches
from .matching_models import MutualMatch, PendingRequest, Suggestion
from .recommender import compatibility, score_breakdown
from .settings import SettingsStore, load_settings
from .stores import InMemoryMatchStore, InMemoryNotificationSink, InMemoryTelemetrySink


app = typer.Typer(help="StudyMatch matching engine CLI")

DEFAULT_MATCHES_CSV = Path("matches.csv")


def configure_logging(level: str = "WARNING") -> None:
	"""Send library logs through rich; safe to call more than once."""
	logging.basicConfig(
		level=level.upper(),
		format="%(message)s",
		datefmt="[%X]",
		handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
		force=True,
	)


@app.callback()
def main(
	log_level: str = typer.Option("WARNING", "--log-level", help="Logging level (DEBUG, INFO, WARNING, ...)"),
):
	configure_logging(log_level)


def _build_engine(users_csv: Path, matches_csv: Path, ai: bool = True) -> Tuple[MatchingEngine, InMemoryMatchStore, InMemoryTelemetrySink]:
	users, profiles = load_directory(users_csv)
	matches = load_matches(matches_csv)
	settings = SettingsStore(load_settings())
	if not ai:
		settings.set_ai_enabled(False)
	telemetry = InMemoryTelemetrySink()
	engine = MatchingEngine(
		users,
		profiles,
		matches,
		settings=settings,
		telemetry=telemetry,
		notifications=InMemoryNotificationSink(),
	)
	return engine, matches, telemetry


def _fail(err: MatchingError) -> None:
	print(f"[red]{err.code}[/red]: {err.message}")
	raise typer.Exit(code=1)


def _suggestion_table(suggestions: List[Suggestion]) -> Table:
	table = Table("#", "user_id", "name", "score", "base", "ai", "reason")
	for i, s in enumerate(suggestions, start=1):
		table.add_row(
			str(i),
			s.partner.user_id,
			s.partner.display_name,
			str(s.score),
			str(s.base_score),
			"yes" if s.ai_enhanced else "",
			s.reason,
		)
	return table


def _match_table(views: List[PendingRequest] | List[MutualMatch]) -> Table:
	table = Table("match_id", "partner", "score", "reason", "created_at")
	for v in views:
		table.add_row(v.match_id, v.partner.display_name, str(v.score), v.reason or "", v.created_at.isoformat())
	return table


@app.command()
def score(
	users_csv: Path = typer.Argument(..., help="Users/profiles CSV"),
	user_a: str = typer.Argument(..., help="First user id"),
	user_b: str = typer.Argument(..., help="Second user id"),
):
	"""Rule-based compatibility of two profiles, with the per-component breakdown."""
	_, profiles = load_directory(users_csv)
	try:
		p1 = profiles.get(user_a)
		if p1 is None:
			raise ProfileNotFoundError(user_a)
		p2 = profiles.get(user_b)
		if p2 is None:
			raise ProfileNotFoundError(user_b)
	except MatchingError as e:
		_fail(e)

	total, reason = compatibility(p1, p2)
	table = Table("component", "similarity")
	for name, value in score_breakdown(p1, p2).items():
		table.add_row(name, f"{value:.3f}")
	print(table)
	print(f"[bold]Score: {total}[/bold]  {reason}")


@app.command()
def suggest(
	users_csv: Path = typer.Argument(..., help="Users/profiles CSV"),
	user_id: str = typer.Argument(..., help="User to build suggestions for"),
	matches_csv: Path = typer.Option(DEFAULT_MATCHES_CSV, help="Match records CSV"),
	ai: bool = typer.Option(True, "--ai/--no-ai", help="Enrich the shortlist through the provider"),
	refresh: bool = typer.Option(False, "--refresh", help="Clear the user's pending requests first"),
):
	"""Ranked study partner suggestions for one user."""
	engine, matches, telemetry = _build_engine(users_csv, matches_csv, ai=ai)
	try:
		if refresh:
			suggestions = engine.refresh_suggestions(user_id)
			save_matches(matches.all(), matches_csv)
		else:
			suggestions = engine.get_suggestions(user_id)
	except MatchingError as e:
		_fail(e)

	print(_suggestion_table(suggestions))
	tokens = telemetry.total_for(user_id)
	if tokens:
		print(f"[dim]Provider tokens used: {tokens}[/dim]")


@app.command()
def request(
	users_csv: Path = typer.Argument(..., help="Users/profiles CSV"),
	requester_id: str = typer.Argument(..., help="User sending the request"),
	target_id: str = typer.Argument(..., help="User receiving the request"),
	matches_csv: Path = typer.Option(DEFAULT_MATCHES_CSV, help="Match records CSV"),
):
	"""Send a study partner request."""
	engine, matches, _ = _build_engine(users_csv, matches_csv, ai=False)
	try:
		record = engine.send_request(requester_id, target_id)
	except MatchingError as e:
		_fail(e)
	save_matches(matches.all(), matches_csv)
	print(f"[green]Request sent[/green] {record.id} (score={record.compatibility_score})")


@app.command()
def accept(
	users_csv: Path = typer.Argument(..., help="Users/profiles CSV"),
	user_id: str = typer.Argument(..., help="Recipient of the request"),
	match_id: str = typer.Argument(..., help="Match id to accept"),
	matches_csv: Path = typer.Option(DEFAULT_MATCHES_CSV, help="Match records CSV"),
):
	engine, matches, _ = _build_engine(users_csv, matches_csv, ai=False)
	try:
		engine.accept(user_id, match_id)
	except MatchingError as e:
		_fail(e)
	save_matches(matches.all(), matches_csv)
	print(f"[green]Matched![/green] {match_id}")


@app.command()
def decline(
	users_csv: Path = typer.Argument(..., help="Users/profiles CSV"),
	user_id: str = typer.Argument(..., help="Recipient of the request"),
	match_id: str = typer.Argument(..., help="Match id to decline"),
	matches_csv: Path = typer.Option(DEFAULT_MATCHES_CSV, help="Match records CSV"),
):
	engine, matches, _ = _build_engine(users_csv, matches_csv, ai=False)
	try:
		engine.decline(user_id, match_id)
	except MatchingError as e:
		_fail(e)
	save_matches(matches.all(), matches_csv)
	print(f"[yellow]Declined[/yellow] {match_id}")


@app.command()
def unmatch(
	users_csv: Path = typer.Argument(..., help="Users/profiles CSV"),
	user_id: str = typer.Argument(..., help="User ending the match"),
	target_id: str = typer.Argument(..., help="Current match partner"),
	matches_csv: Path = typer.Option(DEFAULT_MATCHES_CSV, help="Match records CSV"),
	delete_chat: bool = typer.Option(True, "--delete-chat/--keep-chat", help="Leave the shared conversation"),
):
	engine, matches, _ = _build_engine(users_csv, matches_csv, ai=False)
	try:
		record = engine.unmatch(user_id, target_id, delete_chat=delete_chat)
	except MatchingError as e:
		_fail(e)
	save_matches(matches.all(), matches_csv)
	print(f"[yellow]Unmatched[/yellow] {record.id}")


@app.command()
def clear(
	users_csv: Path = typer.Argument(..., help="Users/profiles CSV"),
	user_id: str = typer.Argument(..., help="User whose sent requests are dropped"),
	matches_csv: Path = typer.Option(DEFAULT_MATCHES_CSV, help="Match records CSV"),
):
	"""Remove every pending request the user has sent."""
	engine, matches, _ = _build_engine(users_csv, matches_csv, ai=False)
	removed = engine.clear_pending(user_id)
	save_matches(matches.all(), matches_csv)
	print(f"Cleared {removed} pending requests")


@app.command()
def requests(
	users_csv: Path = typer.Argument(..., help="Users/profiles CSV"),
	user_id: str = typer.Argument(..., help="Recipient"),
	matches_csv: Path = typer.Option(DEFAULT_MATCHES_CSV, help="Match records CSV"),
):
	"""Pending requests waiting on the user."""
	engine, _, _ = _build_engine(users_csv, matches_csv, ai=False)
	print(_match_table(engine.get_pending_requests(user_id)))


@app.command()
def matches(
	users_csv: Path = typer.Argument(..., help="Users/profiles CSV"),
	user_id: str = typer.Argument(..., help="User"),
	matches_csv: Path = typer.Option(DEFAULT_MATCHES_CSV, help="Match records CSV"),
	limit: Optional[int] = typer.Option(None, help="Show at most this many"),
):
	"""Mutual matches of the user."""
	engine, _, _ = _build_engine(users_csv, matches_csv, ai=False)
	views = engine.get_mutual_matches(user_id)
	print(_match_table(views[:limit] if limit else views))


if __name__ == "__main__":
	app()
