"""Demo: walk one learner through the sample Python course using FastAPI TestClient.

Run with:
    python scripts/demo_learning_flow.py
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from progress_engine.main import app

USER_ID = "demo-learner"
COURSE_ID = "python-basics"

VARIABLES = [
    ("variables-video-1", "video", None),
    ("variables-video-2", "video", None),
    ("variables-video-3", "video", None),
    ("variables-article-4", "article", None),
    ("variables-article-5", "article", None),
    ("variables-quiz-6", "quiz", {"score": 90, "questions_answered": 10}),
]


def _event(topic_id: str, kind: str, details: dict | None) -> dict:
    body = {
        "user_id": USER_ID,
        "course_id": COURSE_ID,
        "concept_id": "variables",
        "topic_id": topic_id,
        "type": kind,
        "completed": True,
        "time_spent_seconds": 240,
        "event_id": f"demo-{topic_id}",
    }
    if details is not None:
        body["details"] = details
    return body


def main() -> None:
    client = TestClient(app)

    # ── Step 1: enroll ──────────────────────────────────────────────
    r = client.post(f"/v1/courses/{COURSE_ID}/enroll", json={"user_id": USER_ID})
    print(f"1. POST enroll              → {r.status_code}  status={r.json()['status']}")

    r = client.post("/v1/paths/python-developer/enroll", json={"user_id": USER_ID})
    print(f"   POST path enroll         → {r.status_code}")

    # ── Step 2: work through the first concept ──────────────────────
    for topic_id, kind, details in VARIABLES:
        r = client.post("/v1/progress/events", json=_event(topic_id, kind, details))
        body = r.json()
        print(
            f"2. POST {topic_id:<20} → {r.status_code}  "
            f"concept={body['concept_progress']:.1f}%  overall={body['overall_progress']:.1f}%"
        )

    mastery = body["mastery"]
    print(f"   mastery                  → {mastery['score']} ({mastery['label']})")
    for unlock in body["unlocked"]:
        print(f"   unlocked                 → {unlock['achievement_id']}")

    # ── Step 3: replay the quiz event ───────────────────────────────
    topic_id, kind, details = VARIABLES[-1]
    r = client.post("/v1/progress/events", json=_event(topic_id, kind, details))
    print(f"3. POST replay              → {r.status_code}  duplicate={r.json()['duplicate']}")

    # ── Step 4: reads ───────────────────────────────────────────────
    r = client.get(f"/v1/progress/{USER_ID}/courses/{COURSE_ID}")
    print(f"4. GET  course progress     → {r.status_code}  overall={r.json()['overall_progress']:.1f}%")

    r = client.get(f"/v1/progress/{USER_ID}/paths/python-developer")
    print(f"   GET  path progress       → {r.status_code}  current={r.json()['current_step']}")

    r = client.get(f"/v1/users/{USER_ID}/streak")
    print(f"   GET  streak              → {r.status_code}  current={r.json()['current_streak']}")

    r = client.get(f"/v1/users/{USER_ID}/analytics/week")
    week = r.json()
    print(f"   GET  weekly analytics    → {r.status_code}  time={week['time_spent_seconds']}s")

    # ── Step 5: mock test ───────────────────────────────────────────
    r = client.post(
        "/v1/assessments/python-mock-1/attempts",
        json={
            "user_id": USER_ID,
            "responses": [
                {"question_id": "q1", "selected_answers": [2]},
                {
                    "question_id": "q2",
                    "test_case_results": [
                        {"test_case_id": "t1", "passed": True},
                        {"test_case_id": "t2", "passed": True},
                    ],
                },
            ],
        },
    )
    attempt = r.json()["attempt"]
    print(
        f"5. POST mock test attempt   → {r.status_code}  "
        f"score={attempt['total_score']:.0f}  passed={attempt['passed']}"
    )

    print("\nDemo complete.")


if __name__ == "__main__":
    main()
