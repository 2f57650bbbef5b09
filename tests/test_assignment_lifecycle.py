from datetime import timedelta

from assessment_portal.models.notification import Notification
from assessment_portal.models.question import Question, QuestionOption, QuestionType
from assessment_portal.models.test_definition import TestQuestion
from assessment_portal.models.test_assignment import AssignmentAnswer, AssignmentStatus, TestAssignment
from assessment_portal.services import assignment_lifecycle as lifecycle
from assessment_portal.services import email as email_mod
from assessment_portal.utils.datetime import utc_now_naive


def answer(client, assignment_id, question_id, **response):
    return client.post(
        f"/test-assignments/{assignment_id}/submit-answer",
        json={"question_id": question_id, "response": response},
    )


# ---------------- creation -----------------
def test_create_assignment(client, make_assignment):
    body = make_assignment(1)
    assert body["id"] == 1
    assert body["status"] == "pending"
    assert body["candidate_name"] == "Casey Candidate"
    assert body["assigned_by"] == "admin-1"
    assert body["linked_assignment_ids"] == []


def test_create_sends_notification_and_email(client, make_assignment, db_session, mock_email_send):
    make_assignment(1)
    notes = db_session.query(Notification).all()
    assert [n.user_id for n in notes] == ["candidate-1"]
    assert notes[0].title == "New Test Assigned"
    assert "Leadership Profile" in notes[0].message
    assert mock_email_send[0]["to"] == "casey@example.com"


def test_notification_failure_does_not_fail_creation(client, seed, as_admin, monkeypatch, db_session,
                                                    assignment_payload):
    def boom(*args, **kwargs):
        raise RuntimeError("template store offline")

    monkeypatch.setattr(email_mod, "render_test_assigned_email", boom)
    res = client.post("/test-assignments", json=assignment_payload(1))
    assert res.status_code == 201
    assert db_session.get(TestAssignment, 1) is not None


def test_duplicate_id_rejected(client, make_assignment, assignment_payload):
    make_assignment(1)
    res = client.post("/test-assignments", json=assignment_payload(1))
    assert res.status_code == 400
    assert "already exists" in res.json()["detail"]


def test_create_unknown_candidate_404(client, seed, as_admin, assignment_payload):
    res = client.post("/test-assignments", json=assignment_payload(1, candidate_id=999))
    assert res.status_code == 404


def test_create_rejects_inverted_window(client, seed, as_admin, assignment_payload):
    now = utc_now_naive()
    res = client.post("/test-assignments", json=assignment_payload(
        1, scheduled_at=now.isoformat(), expires_at=(now - timedelta(hours=1)).isoformat()))
    assert res.status_code == 400


def test_create_requires_admin(client, seed, as_candidate, assignment_payload):
    res = client.post("/test-assignments", json=assignment_payload(1))
    assert res.status_code == 403


def test_batch_partial_success(client, seed, as_admin, assignment_payload):
    res = client.post("/test-assignments/batch", json={"assignments": [
        assignment_payload(1),
        assignment_payload(2, candidate_id=999),
    ]})
    assert res.status_code == 200
    body = res.json()
    assert [a["id"] for a in body["success"]] == [1]
    assert body["failures"][0]["assignment_id"] == 2
    assert "999" in body["failures"][0]["message"]


def test_batch_empty_rejected(client, seed, as_admin):
    res = client.post("/test-assignments/batch", json={"assignments": []})
    assert res.status_code == 400


# ---------------- start & questions -----------------
def test_start_sets_started(client, make_assignment, switch_user):
    make_assignment(1)
    switch_user("candidate")
    res = client.put("/test-assignments/1/start")
    assert res.status_code == 200
    assert res.json()["status"] == "started"
    first_start = res.json()["start_time"]

    res = client.put("/test-assignments/1/start")
    assert res.json()["start_time"] == first_start


def test_start_before_window(client, make_assignment, switch_user):
    now = utc_now_naive()
    make_assignment(1, scheduled_at=(now + timedelta(days=1)).isoformat(),
                    expires_at=(now + timedelta(days=2)).isoformat())
    switch_user("candidate")
    res = client.put("/test-assignments/1/start")
    assert res.status_code == 400
    assert "not yet available" in res.json()["detail"]


def test_start_after_window(client, make_assignment, switch_user, db_session):
    make_assignment(1)
    row = db_session.get(TestAssignment, 1)
    row.expires_at = utc_now_naive() - timedelta(minutes=1)
    db_session.commit()
    switch_user("candidate")
    assert client.put("/test-assignments/1/start").status_code == 400


def test_get_questions_starts_and_hides_scores(client, make_assignment, switch_user):
    make_assignment(1)
    switch_user("candidate")
    res = client.get("/test-assignments/1/questions")
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "started"
    assert body["start_time"] is not None
    assert [q["id"] for q in body["questions"]] == [1, 2, 3]
    first_option = body["questions"][0]["options"][0]
    assert "score" not in first_option
    assert first_option["text"] == "Strongly Disagree"
    assert body["organization"]["terms_and_conditions"] == "Be honest."
    assert body["candidate"] is None


def test_admin_sees_option_scores(client, make_assignment):
    make_assignment(1)
    body = client.get("/test-assignments/1/questions").json()
    assert body["questions"][0]["options"][3]["score"] == 4


def test_candidate_cannot_see_other_candidate(client, make_assignment, switch_user):
    make_assignment(1)
    switch_user("candidate", id="candidate-2", candidate_id=102)
    assert client.get("/test-assignments/1").status_code == 403
    assert client.get("/test-assignments/1/questions").status_code == 403


def test_get_missing_assignment(client, seed, as_admin):
    assert client.get("/test-assignments/42").status_code == 404


# ---------------- answers -----------------
def test_submit_answer_upserts(client, make_assignment, switch_user, db_session):
    make_assignment(1)
    switch_user("candidate")
    res = answer(client, 1, 1, kind="likert", label="Agree")
    assert res.status_code == 200
    assert res.json()["score_obtained"] == 4
    assert res.json()["max_score"] == 5
    assert res.json()["sequence"] == 1

    res = answer(client, 1, 1, kind="likert", position=2)
    assert res.json()["score_obtained"] == 2
    assert res.json()["sequence"] == 1

    rows = db_session.query(AssignmentAnswer).filter(AssignmentAnswer.assignment_id == 1).all()
    assert len(rows) == 1
    assert rows[0].response == {"kind": "likert", "position": 2, "label": None}


def test_submit_legacy_answer_value(client, make_assignment):
    make_assignment(1)
    res = client.post("/test-assignments/1/submit-answer", json={"question_id": 2, "answer": 2})
    assert res.status_code == 200
    # reversed item: position 2 of 5 scores 4
    assert res.json()["score_obtained"] == 4


def test_submit_question_outside_test(client, make_assignment):
    make_assignment(1)
    res = answer(client, 1, 4, kind="likert", position=3)
    assert res.status_code == 400


def test_submit_unknown_question(client, make_assignment):
    make_assignment(1)
    assert answer(client, 1, 77, kind="likert", position=3).status_code == 404


def test_submit_needs_a_value(client, make_assignment):
    make_assignment(1)
    res = client.post("/test-assignments/1/submit-answer", json={"question_id": 1})
    assert res.status_code == 422


def test_submit_after_expiry(client, make_assignment, db_session):
    make_assignment(1)
    row = db_session.get(TestAssignment, 1)
    row.expires_at = utc_now_naive() - timedelta(seconds=1)
    db_session.commit()
    res = answer(client, 1, 1, kind="likert", position=3)
    assert res.status_code == 400
    assert "expired" in res.json()["detail"]


# ---------------- progress -----------------
def test_save_progress_tracks_furthest_page(client, make_assignment, switch_user):
    make_assignment(1)
    switch_user("candidate")
    res = client.put("/test-assignments/1/save-progress", json={"current_page": 3, "total_pages": 4})
    assert res.json()["page_completed"] == 3
    res = client.put("/test-assignments/1/save-progress", json={"current_page": 2, "total_pages": 4})
    body = res.json()
    assert body["current_page"] == 2
    assert body["page_completed"] == 3


def test_save_progress_page_beyond_total(client, make_assignment):
    make_assignment(1)
    res = client.put("/test-assignments/1/save-progress", json={"current_page": 5, "total_pages": 4})
    assert res.status_code == 400


# ---------------- completion -----------------
def test_complete_with_aggregation(client, make_assignment, switch_user):
    make_assignment(1)
    switch_user("candidate")
    answer(client, 1, 1, kind="likert", label="Agree")
    answer(client, 1, 2, kind="likert", position=2)
    answer(client, 1, 3, kind="text", text="Shipping under pressure")

    res = client.put("/test-assignments/1/complete-test")
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "completed"
    assert body["score"] == 80
    assert body["domain_scores"] == [{
        "domain_id": 10,
        "domain_name": "Leadership",
        "obtained_score": 8,
        "max_score": 10,
        "percentage": 80,
    }]
    assert {s["subdomain_name"] for s in body["subdomain_scores"]} == {"Decisiveness", "Empathy"}


def test_complete_rerun_is_idempotent(client, make_assignment):
    make_assignment(1)
    answer(client, 1, 1, kind="likert", position=5)
    first = client.put("/test-assignments/1/complete-test").json()
    second = client.put("/test-assignments/1/complete-test").json()
    assert second["score"] == first["score"] == 100
    assert second["domain_scores"] == first["domain_scores"]
    assert second["end_time"] == first["end_time"]


def test_complete_without_answers(client, make_assignment):
    make_assignment(1)
    res = client.put("/test-assignments/1/complete-test")
    assert res.status_code == 400


def test_no_answers_after_completion(client, make_assignment):
    make_assignment(1)
    answer(client, 1, 1, kind="likert", position=5)
    client.put("/test-assignments/1/complete-test")
    res = answer(client, 1, 2, kind="likert", position=1)
    assert res.status_code == 400
    assert "completed" in res.json()["detail"]


def test_aggregation_failure_leaves_assignment_unchanged(client, make_assignment, monkeypatch, db_session):
    from fastapi.testclient import TestClient

    make_assignment(1)
    answer(client, 1, 1, kind="likert", position=5)

    def broken(*args, **kwargs):
        raise RuntimeError("aggregation exploded")

    monkeypatch.setattr(lifecycle, "aggregate", broken)
    res = TestClient(client.app, raise_server_exceptions=False).put("/test-assignments/1/complete-test")
    assert res.status_code == 500

    db_session.expire_all()
    row = db_session.get(TestAssignment, 1)
    assert row.status == AssignmentStatus.pending
    assert row.score is None


def test_complete_simple(client, make_assignment):
    make_assignment(1)
    res = client.put("/test-assignments/1/complete", json={"score": 72.5})
    assert res.status_code == 200
    assert res.json()["status"] == "completed"
    assert res.json()["score"] == 72.5
    assert client.put("/test-assignments/1/complete", json={"score": 10}).status_code == 400


def test_detailed_scores(client, make_assignment, switch_user):
    make_assignment(1)
    switch_user("candidate")
    client.post("/test-assignments/1/log-activity", json={"activity_type": "test_start"})
    answer(client, 1, 1, kind="likert", label="Agree")
    answer(client, 1, 2, kind="likert", position=2)
    answer(client, 1, 3, kind="text", text="  ")

    assert client.get("/test-assignments/1/detailed-scores").status_code == 400
    client.put("/test-assignments/1/complete-test")

    body = client.get("/test-assignments/1/detailed-scores").json()
    assert body["overall_score"] == 80
    assert body["domain_scores"] == {"leadership": 80}
    assert body["total_questions"] == 3
    assert body["total_answered"] == 2
    assert body["activity_analytics"]["activity_log"][0]["activity_type"] == "test_start"


# ---------------- deletion & listing -----------------
def test_delete_pending_only(client, make_assignment, switch_user):
    make_assignment(1)
    make_assignment(2)
    assert client.delete("/test-assignments/1").status_code == 200
    assert client.get("/test-assignments/1").status_code == 404

    switch_user("candidate")
    client.put("/test-assignments/2/start")
    switch_user("admin")
    res = client.delete("/test-assignments/2")
    assert res.status_code == 400


def test_list_paginates(client, make_assignment):
    for i in range(1, 4):
        make_assignment(i)
    res = client.get("/test-assignments", params={"page": 1, "limit": 2})
    body = res.json()
    assert body["total"] == 3
    assert body["pages"] == 2
    assert len(body["items"]) == 2
    assert body["items"][0]["test_name"] == "Leadership Profile"
    assert body["items"][0]["candidate_email"] == "casey@example.com"


def test_list_candidate_assignments(client, make_assignment, switch_user):
    make_assignment(1)
    make_assignment(2, candidate_id=102)
    switch_user("candidate")
    res = client.get("/test-assignments/candidate/101")
    assert [a["id"] for a in res.json()] == [1]
    assert client.get("/test-assignments/candidate/102").status_code == 403


# ---------------- answer kind vs question type -----------------
def test_choice_answer_on_reversed_likert_applies_reversal(client, make_assignment):
    make_assignment(1)
    by_choice = answer(client, 1, 2, kind="choice", label="Strongly Disagree")
    assert by_choice.status_code == 200
    by_likert = answer(client, 1, 2, kind="likert", label="Strongly Disagree")
    assert by_choice.json()["score_obtained"] == by_likert.json()["score_obtained"] == 5
    assert by_choice.json()["max_score"] == 5


def test_likert_answer_on_choice_question_uses_option_score(client, make_assignment, db_session):
    make_assignment(1)
    question = Question(id=5, text="Preferred working style?", question_type=QuestionType.single_choice)
    question.options = [
        QuestionOption(position=1, text="Alone", score=0),
        QuestionOption(position=2, text="Pairing", score=3),
        QuestionOption(position=3, text="In a team", score=1),
    ]
    db_session.add(question)
    db_session.add(TestQuestion(test_id=1, question_id=5, position=4))
    db_session.commit()

    res = answer(client, 1, 5, kind="likert", label="Pairing")
    assert res.json()["score_obtained"] == 3
    assert res.json()["max_score"] == 3
    res = answer(client, 1, 5, kind="likert", position=3)
    assert res.json()["score_obtained"] == 1


def test_likert_label_wins_over_position(client, make_assignment):
    make_assignment(1)
    res = answer(client, 1, 1, kind="likert", label="Agree", position=1)
    assert res.json()["score_obtained"] == 4


def test_likert_unknown_label_falls_back_to_position(client, make_assignment):
    make_assignment(1)
    res = answer(client, 1, 1, kind="likert", label="Sort of", position=2)
    assert res.json()["score_obtained"] == 2
    res = answer(client, 1, 1, kind="likert", label="Sort of")
    assert res.status_code == 200
    assert res.json()["score_obtained"] == 0


def test_start_after_completion(client, make_assignment, switch_user, db_session):
    make_assignment(1)
    answer(client, 1, 1, kind="likert", position=4)
    assert client.put("/test-assignments/1/complete-test").status_code == 200

    switch_user("candidate")
    res = client.put("/test-assignments/1/start")
    assert res.status_code == 400
    assert "completed" in res.json()["detail"]
    db_session.expire_all()
    assert db_session.get(TestAssignment, 1).status == AssignmentStatus.completed
