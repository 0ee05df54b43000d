"""Tests for citation collection and deterministic fallback replies."""

from datetime import datetime, timedelta, timezone

from companion.chat.citations import CitationCollector
from companion.chat.compaction import CompactionLimits
from companion.chat.fallback import GENERIC_FAILURE_REPLY, PENDING_ACTIONS_HEADER, FallbackSynthesizer
from companion.chat.shapers import create_standard_shapers
from companion.chat.store import DomainData, InMemoryStore
from companion.chat.types import Citation, ExecutedFunctionResponse

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def _executed(name, raw, is_error=False):
    return ExecutedFunctionResponse(name=name, raw_response=raw, model_response=raw, is_error=is_error)


def _deadlines():
    return [
        {"id": "deadline-1", "course": "DAT560", "task": "Assignment 2", "due_date": (NOW + timedelta(days=2)).isoformat()},
        {"id": "deadline-2", "course": "DAT520", "task": "Lab 3", "due_date": (NOW + timedelta(days=4)).isoformat()},
    ]


class TestCitationCollector:
    def test_same_entity_from_two_calls_is_cited_once(self):
        collector = CitationCollector(create_standard_shapers(), max_citations=8)
        collector.collect(_executed("get_deadlines", _deadlines()))
        collector.collect(_executed("get_deadlines", _deadlines()))

        keys = [c.key for c in collector.results()]
        assert keys == ["deadline:deadline-1", "deadline:deadline-2"]

    def test_first_occurrence_wins(self):
        collector = CitationCollector(create_standard_shapers())
        collector.merge([Citation(id="x", type="email", label="first")])
        collector.merge([Citation(id="x", type="email", label="second")])
        assert collector.results()[0].label == "first"

    def test_cap_is_enforced(self):
        collector = CitationCollector(create_standard_shapers(), max_citations=3)
        events = [{"id": f"lecture-{i}", "title": f"Lecture {i}", "start_time": NOW.isoformat()} for i in range(10)]
        collector.collect(_executed("get_schedule", events))
        assert len(collector.results()) == 3

    def test_entries_without_id_or_label_are_dropped(self):
        collector = CitationCollector(create_standard_shapers())
        collector.collect(_executed("get_schedule", [{"title": "No id"}, {"id": "lecture-9"}, {"id": "lecture-1", "title": "Ok"}]))
        assert [c.id for c in collector.results()] == ["lecture-1"]

    def test_error_results_contribute_nothing(self):
        collector = CitationCollector(create_standard_shapers())
        collector.collect(_executed("get_deadlines", {"error": "boom"}, is_error=True))
        assert collector.results() == []

    def test_queued_deadline_action_cites_deadline_from_store(self):
        store = InMemoryStore(DomainData(deadlines=_deadlines()), clock=lambda: NOW)
        raw = {
            "requires_confirmation": True,
            "pending_action": {"id": "action-1", "payload": {"deadline_id": "deadline-2"}},
        }
        collector = CitationCollector(create_standard_shapers())
        collector.collect(_executed("queue_deadline_action", raw), store)

        (citation,) = collector.results()
        assert citation.type == "deadline"
        assert citation.id == "deadline-2"
        assert citation.label == "DAT520 Lab 3"

    def test_social_citation_types(self):
        raw = {
            "youtube": {"videos": [{"id": "vid1", "title": "Graph algorithms", "channel_title": "CS Dojo"}], "total": 1},
            "x": {"tweets": [{"id": "tw1", "text": "New paper out", "author_username": "prof"}], "total": 1},
        }
        collector = CitationCollector(create_standard_shapers())
        collector.collect(_executed("get_social_digest", raw))
        assert [c.type for c in collector.results()] == ["social-youtube", "social-x"]
        assert collector.results()[1].label == "@prof: New paper out"


class TestFallbackSynthesizer:
    def _synth(self, max_items=10):
        return FallbackSynthesizer(create_standard_shapers(), CompactionLimits(max_items=max_items))

    def test_pending_actions_take_priority(self):
        store = InMemoryStore(clock=lambda: NOW)
        action = store.create_pending_action("create-habit", 'Start tracking habit "Stretch" (daily)', {"name": "Stretch"})

        reply = self._synth().synthesize([_executed("get_deadlines", _deadlines())], [action])

        assert reply.splitlines()[0] == PENDING_ACTIONS_HEADER
        assert f"Confirm: confirm {action.id}" in reply
        assert f"Cancel: cancel {action.id}" in reply
        assert "Upcoming deadlines" not in reply

    def test_sections_follow_call_order(self):
        reply = self._synth().synthesize([
            _executed("get_deadlines", _deadlines()),
            _executed("get_emails", [{"id": "mail-1", "subject": "Exam room", "from": "uni"}]),
        ])
        assert reply.index("Upcoming deadlines:") < reply.index("Recent emails:")
        assert "Exam room from uni" in reply

    def test_error_results_are_skipped(self):
        reply = self._synth().synthesize([_executed("get_emails", {"error": "nope"}, is_error=True)])
        assert reply == GENERIC_FAILURE_REPLY

    def test_nothing_executed_gives_apology(self):
        assert self._synth().synthesize([]) == GENERIC_FAILURE_REPLY

    def test_more_marker(self):
        deadlines = [
            {"id": f"deadline-{i}", "course": "C", "task": f"T{i}", "due_date": NOW.isoformat()} for i in range(7)
        ]
        reply = self._synth(max_items=5).synthesize([_executed("get_deadlines", deadlines)])
        assert reply.endswith("+2 more")
