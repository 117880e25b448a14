from datetime import timedelta

from assessment_engine.core.config import settings
from assessment_engine.core.errors import AttemptNotActiveError
from assessment_engine.models.orm import Attempt
from assessment_engine.services import sweep
from assessment_engine.services.attempts import AttemptTracker


def status_of(db, attempt_id):
    db.expire_all()
    a = db.get(Attempt, attempt_id)
    return a.status, a.end_reason


def test_sweep_abandons_expired_quizzes_and_idle_sessions(db, tracker, clock, make_question, make_set):
    qs = make_set([make_question(), make_question()], time_limit=10)
    quiz = tracker.start("u1", qs.id, "quiz")
    idle = tracker.start("u2", qs.id, "practice")
    fresh_quiz = tracker.start("u3", qs.id, "quiz")
    done = tracker.start("u4", qs.id, "practice")
    tracker.complete(done["attempt_id"], "u4")

    start = clock.now
    clock.advance(hours=settings.STALE_ATTEMPT_HOURS, minutes=1)
    # u3 starts later, so its quiz is still running at sweep time
    db.get(Attempt, fresh_quiz["attempt_id"]).expires_at = clock.now + timedelta(minutes=5)
    db.commit()

    result = sweep.abandon_stale_attempts(db, now=clock.now)
    assert result == {"abandoned": 2, "skipped": 0}
    assert status_of(db, quiz["attempt_id"]) == ("abandoned", "time_limit")
    assert status_of(db, idle["attempt_id"]) == ("abandoned", "stale")
    assert status_of(db, fresh_quiz["attempt_id"]) == ("in_progress", None)
    assert status_of(db, done["attempt_id"]) == ("completed", "submitted")
    assert db.get(Attempt, quiz["attempt_id"]).ended_at > start


def test_sweep_respects_grace_window(db, tracker, clock, make_question, make_set):
    qs = make_set([make_question()], time_limit=10)
    quiz = tracker.start("u1", qs.id, "quiz")
    clock.advance(minutes=10, seconds=settings.ATTEMPT_GRACE_SECONDS - 5)
    assert sweep.abandon_stale_attempts(db, now=clock.now) == {"abandoned": 0, "skipped": 0}
    clock.advance(seconds=10)
    assert sweep.abandon_stale_attempts(db, now=clock.now) == {"abandoned": 1, "skipped": 0}
    assert status_of(db, quiz["attempt_id"]) == ("abandoned", "time_limit")


def test_sweep_skips_attempts_that_changed_underneath(db, tracker, clock, make_question, make_set, monkeypatch):
    qs = make_set([make_question()], time_limit=10)
    quiz = tracker.start("u1", qs.id, "quiz")
    clock.advance(hours=1)

    def completed_meanwhile(self, attempt_id, user_id=None, reason="user"):
        raise AttemptNotActiveError("Cannot abandon: attempt is completed", status="completed")

    monkeypatch.setattr(AttemptTracker, "abandon", completed_meanwhile)
    assert sweep.abandon_stale_attempts(db, now=clock.now) == {"abandoned": 0, "skipped": 1}
    assert status_of(db, quiz["attempt_id"]) == ("in_progress", None)
