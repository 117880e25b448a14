from assessment_engine.models.orm import Question
from assessment_engine.services.stats import StatsAggregator
from assessment_engine.services.store import AssessmentStore


def counters(db, questions):
    db.expire_all()
    return [(db.get(Question, q.id).times_used, db.get(Question, q.id).times_correct) for q in questions]


def test_completion_bumps_answered_questions_only(db, tracker, make_question, make_set):
    questions = [make_question(correct="A") for _ in range(3)]
    qs = make_set(questions)
    started = tracker.start("u1", qs.id)
    tracker.submit_answer(started["attempt_id"], questions[0].id, "A", "u1")
    tracker.submit_answer(started["attempt_id"], questions[1].id, "D", "u1")
    assert counters(db, questions) == [(0, 0), (0, 0), (0, 0)]
    tracker.complete(started["attempt_id"], "u1")
    assert counters(db, questions) == [(1, 1), (1, 0), (0, 0)]


def test_counters_accumulate_across_attempts(db, tracker, make_question, make_set):
    questions = [make_question(correct="A") for _ in range(2)]
    qs = make_set(questions)
    for user, label in [("u1", "A"), ("u2", "B"), ("u3", "A")]:
        started = tracker.start(user, qs.id)
        tracker.submit_answer(started["attempt_id"], questions[0].id, label, user)
        tracker.complete(started["attempt_id"], user)
    assert counters(db, questions) == [(3, 2), (0, 0)]
    assert db.get(Question, questions[0].id).correct_rate == 2 / 3


def test_abandoned_attempts_do_not_feed_stats(db, tracker, make_question, make_set):
    questions = [make_question(correct="A") for _ in range(2)]
    qs = make_set(questions)
    started = tracker.start("u1", qs.id)
    tracker.submit_answer(started["attempt_id"], questions[0].id, "A", "u1")
    tracker.abandon(started["attempt_id"], "u1")
    assert counters(db, questions) == [(0, 0), (0, 0)]


def test_aggregator_ignores_answers_outside_snapshot(db, tracker, make_question, make_set):
    questions = [make_question(correct="A") for _ in range(2)]
    qs = make_set(questions)
    started = tracker.start("u1", qs.id)
    tracker.submit_answer(started["attempt_id"], questions[0].id, "A", "u1")
    store = AssessmentStore(db)
    attempt = store.get_attempt(started["attempt_id"])
    answers = store.get_answers(attempt.id)
    # a stray record keyed to a question outside the snapshot is skipped
    answers[10_000] = answers[questions[0].id]
    assert StatsAggregator(store).apply_completed_attempt(attempt, answers) == 1
    db.commit()
    assert counters(db, questions) == [(1, 1), (0, 0)]
