import pytest

from factories import FakeMonotonic, FakeProvider, assessment, completion, make_profile, make_record, make_user, usage
from studymatch.cache import ResultCache
from studymatch.data_models import MatchStatus
from studymatch.enrichment import EnrichmentOrchestrator
from studymatch.errors import ProfileNotFoundError, UserNotFoundError
from studymatch.matcher import MAX_SUGGESTIONS, SuggestionAssembler, eligible_candidates
from studymatch.settings import AISettings, SettingsStore
from studymatch.stores import InMemoryMatchStore, InMemoryProfileStore, InMemoryUserDirectory


def make_assembler(users, profiles, matches, provider=None, settings=None, telemetry=None):
    cache = ResultCache(ttl_seconds=3600, max_size=100, clock=FakeMonotonic())
    orchestrator = EnrichmentOrchestrator(provider or FakeProvider(), cache, telemetry)
    return SuggestionAssembler(users, profiles, matches, orchestrator, settings or SettingsStore())


def ids(suggestions):
    return [s.suggestion_id for s in suggestions]


class TestEligibility:
    def test_excludes_self_deleted_matched_and_profileless(self, users, profiles, matches):
        users.put(make_user("ghost", deleted=True))
        profiles.put(make_profile("ghost", subjects=["Math"]))
        users.put(make_user("newbie"))
        matches.add(make_record("m1", "carol", "alice"))

        pool = eligible_candidates("alice", users, profiles, matches)

        assert sorted(u.id for u, _ in pool) == ["admin", "bob", "dave"]

    @pytest.mark.parametrize("status", list(MatchStatus))
    def test_any_record_status_excludes(self, users, profiles, matches, status):
        matches.add(make_record("m1", "alice", "bob", status=status))
        pool = eligible_candidates("alice", users, profiles, matches)
        assert "bob" not in [u.id for u, _ in pool]


class TestGetSuggestions:
    def test_unknown_user(self, users, profiles, matches):
        with pytest.raises(UserNotFoundError):
            make_assembler(users, profiles, matches).get_suggestions("nobody")

    def test_user_without_profile(self, users, profiles, matches):
        users.put(make_user("newbie"))
        with pytest.raises(ProfileNotFoundError):
            make_assembler(users, profiles, matches).get_suggestions("newbie")

    def test_rule_based_ranking_when_ai_disabled(self, users, profiles, matches):
        provider = FakeProvider()
        settings = SettingsStore(AISettings(ai_enabled=False, api_key="key"))
        suggestions = make_assembler(users, profiles, matches, provider, settings).get_suggestions("alice")

        assert ids(suggestions) == ["bob", "carol", "admin", "dave"]
        assert suggestions[0].score == suggestions[0].base_score == 41
        assert suggestions[0].reason == "Both study Physics • Same learning style"
        for s in suggestions:
            assert s.status == "SUGGESTION"
            assert s.ai_enhanced is False
            assert s.study_recommendations == []
            assert s.semantic_similarity is None
        assert provider.calls == 0

    def test_no_api_key_behaves_like_disabled(self, users, profiles, matches):
        provider = FakeProvider()
        settings = SettingsStore(AISettings(ai_enabled=True, api_key=None))
        suggestions = make_assembler(users, profiles, matches, provider, settings).get_suggestions("alice")
        assert not any(s.ai_enhanced for s in suggestions)
        assert provider.calls == 0

    def test_provider_failure_equals_rule_based_output(self, users, profiles, matches, settings_store):
        def boom(name):
            raise ConnectionError("provider unreachable")

        failing = make_assembler(users, profiles, matches, FakeProvider(boom), settings_store)
        disabled = make_assembler(users, profiles, matches, settings=SettingsStore(AISettings(ai_enabled=False)))

        assert failing.get_suggestions("alice") == disabled.get_suggestions("alice")

    def test_blank_reason_equals_rule_based_output(self, users, profiles, matches, settings_store):
        blank = FakeProvider(lambda name: completion(assessment(adjustment=15, reason=""), usage=usage()))
        assembler = make_assembler(users, profiles, matches, blank, settings_store)
        disabled = make_assembler(users, profiles, matches, settings=SettingsStore(AISettings(ai_enabled=False)))

        suggestions = assembler.get_suggestions("alice")

        assert suggestions == disabled.get_suggestions("alice")
        assert not any(s.ai_enhanced for s in suggestions)
        assert len(assembler.orchestrator.cache) == 0

    def test_idempotent_without_ai(self, users, profiles, matches):
        assembler = make_assembler(users, profiles, matches, settings=SettingsStore(AISettings(ai_enabled=False)))
        assert assembler.get_suggestions("alice") == assembler.get_suggestions("alice")

    def test_browsing_never_persists(self, users, profiles, matches, settings_store):
        make_assembler(users, profiles, matches, settings=settings_store).get_suggestions("alice")
        assert len(matches) == 0

    def test_enrichment_reranks_shortlist_only(self, users, profiles, matches, telemetry):
        def respond(name):
            if name == "Carol":
                return completion(assessment(adjustment=20, reason="Both prepping maths"), usage=usage())
            return completion(assessment(adjustment=-10), usage=usage())

        provider = FakeProvider(respond)
        settings = SettingsStore(AISettings(api_key="key", ai_match_limit=2))
        suggestions = make_assembler(users, profiles, matches, provider, settings, telemetry).get_suggestions("alice")

        assert ids(suggestions) == ["carol", "bob", "admin", "dave"]
        assert [s.ai_enhanced for s in suggestions] == [True, True, False, False]
        carol = suggestions[0]
        assert carol.score == carol.base_score + 20
        assert carol.reason == "Both prepping maths"
        assert carol.study_recommendations == ["Kinematics", "Past papers"]
        assert suggestions[1].score == 31
        assert provider.calls == 2
        assert telemetry.total_for("alice") == 320

    def test_match_limit_read_from_current_settings(self, users, profiles, matches, settings_store):
        provider = FakeProvider()
        assembler = make_assembler(users, profiles, matches, provider, settings_store)
        settings_store.set_ai_match_limit(1)

        suggestions = assembler.get_suggestions("alice")

        assert provider.calls == 1
        assert [s.ai_enhanced for s in suggestions].count(True) == 1

    def test_capped_at_twenty(self):
        users = InMemoryUserDirectory([make_user(f"u{i:02d}") for i in range(30)])
        profiles = InMemoryProfileStore(
            [make_profile(f"u{i:02d}", subjects=["Math"], streak=i) for i in range(30)]
        )
        assembler = make_assembler(
            users, profiles, InMemoryMatchStore(), settings=SettingsStore(AISettings(ai_enabled=False))
        )

        suggestions = assembler.get_suggestions("u00")

        assert len(suggestions) == MAX_SUGGESTIONS
        scores = [s.score for s in suggestions]
        assert scores == sorted(scores, reverse=True)
        assert ids(suggestions)[0] == "u01"

    def test_equal_scores_ordered_by_candidate_id(self):
        users = InMemoryUserDirectory([make_user(n) for n in ["me", "zoe", "amy", "kim"]])
        profiles = InMemoryProfileStore([make_profile(n, subjects=["Art"]) for n in ["me", "zoe", "amy", "kim"]])
        assembler = make_assembler(
            users, profiles, InMemoryMatchStore(), settings=SettingsStore(AISettings(ai_enabled=False))
        )
        assert ids(assembler.get_suggestions("me")) == ["amy", "kim", "zoe"]
