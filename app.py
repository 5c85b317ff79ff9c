"""EMT Trainer: adaptive practice, timed NREMT-style exam, scenario library, progress."""
import logging
import math
import time

import streamlit as st

from db import get_database
from emt_trainer.config import (
    DEFAULT_EXAM_QUESTIONS,
    FALLBACK_TOPICS,
    MAX_EXAM_QUESTIONS,
    MIN_EXAM_QUESTIONS,
    SCENARIO_PAGE_SIZE,
    get_settings,
)
from emt_trainer.errors import EmtTrainerError
from emt_trainer.exam_session import ExamSessionOrchestrator, clamp_exam_length
from emt_trainer.generator import OpenAIScenarioGenerator
from emt_trainer.models import ResumeContext, Scenario
from emt_trainer.performance import PerformanceTracker
from emt_trainer.practice import AdaptivePractice
from emt_trainer.question import ManualTicker, format_clock
from emt_trainer.scenario_cache import ScenarioCache

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")

PAGES = ["Practice", "Exam", "My Scenarios", "Progress"]

st.set_page_config(page_title="EMT Trainer", layout="wide")
st.sidebar.title("EMT Trainer")

# Query params are one-shot hand-offs: consume them before the widgets are built
if "page" in st.query_params:
    if st.query_params["page"] in PAGES:
        st.session_state["nav"] = st.query_params["page"]
    del st.query_params["page"]
if "target" in st.query_params:
    st.session_state["resume_target"] = st.query_params["target"]
    del st.query_params["target"]

page = st.sidebar.radio("Navigate", PAGES, key="nav", label_visibility="collapsed")
user_id = st.sidebar.text_input("Learner ID", key="user_id")
if not user_id:
    st.info("Enter your learner ID in the sidebar to start.")
    st.stop()

db = get_database()
tracker = PerformanceTracker(db, user_id)


def get_practice() -> AdaptivePractice:
    practice = st.session_state.get("practice")
    if practice is None or practice.user_id != user_id:
        # without an API key the cache still serves stored scenarios
        generator = OpenAIScenarioGenerator() if get_settings().openai_api_key else None
        practice = AdaptivePractice(tracker, ScenarioCache(db, generator))
        st.session_state["practice"] = practice
    return practice


def open_in_trainer(item: Scenario):
    st.session_state["practice_item"] = item
    st.session_state["practice_answer"] = None
    st.query_params["page"] = "Practice"
    st.rerun()


def render_feedback(item: Scenario, selected: str | None):
    for c in item.choices:
        label = f"{c.id}. {c.text}"
        if c.correct:
            st.success(f"✓ {label}")
            if c.why_right:
                st.caption(c.why_right)
        elif c.id == selected:
            st.error(f"✗ {label} (your answer)")
            if c.why_wrong:
                st.caption(c.why_wrong)
        else:
            st.write(f"○ {label}")


# ----- Practice -----
if page == "Practice":
    st.header("Adaptive Practice")
    st.caption("Targets your weakest topic. Scenarios are cached per topic after the first generation.")

    resume_target = st.session_state.get("resume_target")
    if resume_target:
        st.info(f"Next scenario: {resume_target}")

    if st.button("Train my weakest topic", type="primary"):
        resume = ResumeContext(adaptive_target=st.session_state.pop("resume_target", None))
        try:
            st.session_state["practice_item"] = get_practice().next_scenario(resume)
            st.session_state["practice_answer"] = None
        except (EmtTrainerError, ValueError) as e:
            st.error(f"Could not load a scenario: {e}")
        except Exception as e:
            st.error(f"Generation failed: {e}")

    item = st.session_state.get("practice_item")
    if item:
        st.subheader(f"{item.domain} • {item.topic}")
        st.write(item.vignette)
        with st.expander("Key cues"):
            for cue in item.cues:
                st.markdown(f"**{cue.text}**: {cue.rationale}")
        st.write(item.question)

        answer = st.session_state.get("practice_answer")
        if answer is None:
            choice_id = st.radio("Choose one:", [c.id for c in item.choices],
                                 format_func=lambda cid: f"{cid}. {item.choice(cid).text}")
            if st.button("Submit answer"):
                st.session_state["practice_answer"] = get_practice().answer(item, choice_id)
                st.rerun()
        else:
            render_feedback(item, answer.choice.id)
            with st.expander("Reasoning"):
                for step in item.reasoning_steps:
                    st.markdown(f"**{step.label}**: {step.detail}")

# ----- Exam -----
elif page == "Exam":
    st.header("NREMT Exam Mode")
    st.caption("Timed, one question at a time, no going back. 90 seconds per question.")

    orch: ExamSessionOrchestrator | None = st.session_state.get("exam_orch")

    if orch is None or orch.session is None:
        count = st.number_input("Number of questions", MIN_EXAM_QUESTIONS, MAX_EXAM_QUESTIONS, DEFAULT_EXAM_QUESTIONS)
        if st.button("Start exam", type="primary"):
            try:
                seeded = db.seed_exam_items(clamp_exam_length(count))
                session_id = db.create_exam_session(user_id, len(seeded))
                orch = ExamSessionOrchestrator(tracker, answer_sink=db, scheduler=ManualTicker())
                orch.start_seeded(seeded, session_id=session_id)
                st.session_state["exam_orch"] = orch
                st.session_state["exam_clock"] = time.monotonic()
                st.rerun()
            except Exception as e:
                st.error(f"Failed to start exam: {e}")
        st.stop()

    session = orch.session
    if session.completed:
        result = orch.result()
        st.success("Exam complete" if not result.exited else "Exam ended early")
        st.metric("Score", f"{result.correct} / {result.total}", f"{result.percent}%")
        if st.button("Start another exam"):
            try:
                db.complete_exam_session(result.session_id, result.correct, result.total, result.exited)
            except Exception as e:
                logging.getLogger(__name__).error(f"Could not close exam session: {e}")
            orch.close(wait=False)
            st.session_state.pop("exam_orch", None)
            st.rerun()
        st.stop()

    @st.fragment(run_every=1)
    def exam_clock():
        question = orch.question
        elapsed = int(time.monotonic() - st.session_state["exam_clock"])
        if elapsed and not question.is_submitted:
            question.advance_clock(elapsed)
            st.session_state["exam_clock"] += elapsed
        expired = question.attempt is not None and question.attempt.expired
        label = "Time up" if expired else format_clock(question.time_remaining)
        (st.error if question.is_low_time else st.info)(f"⏱ {label}")

    question = orch.question
    item = question.item
    st.progress(session.current_index / len(session.items))
    st.caption(f"Question {session.current_index + 1} of {len(session.items)} • {item.domain} • {item.topic}")
    exam_clock()
    st.write(item.vignette)
    st.write(item.question)

    if not question.is_submitted:
        choice_id = st.radio("Choose one:", [c.id for c in item.choices], index=None,
                             format_func=lambda cid: f"{cid}. {item.choice(cid).text}",
                             key=f"exam_{session.current_index}")
        if choice_id:
            orch.select(choice_id)
        if st.button("Lock in", type="primary", disabled=choice_id is None):
            orch.lock_in()
            st.rerun()
    else:
        render_feedback(item, question.attempt.selected_choice_id)

    col1, col2 = st.columns([1, 3])
    with col1:
        last = session.current_index + 1 >= len(session.items)
        if st.button("Finish" if last else "Next →", disabled=not question.is_submitted):
            orch.advance()
            st.session_state["exam_clock"] = time.monotonic()
            st.rerun()
    with col2:
        if st.button("Exit exam"):
            orch.exit()
            st.rerun()

# ----- My Scenarios -----
elif page == "My Scenarios":
    st.header("My Scenarios")
    st.caption("Every scenario generated for you, newest first.")

    known_topics = sorted({r.topic for r in tracker.top_weak_topics(100)} | set(FALLBACK_TOPICS))
    col1, col2 = st.columns([1, 2])
    with col1:
        topic_filter = st.selectbox("Topic", ["All topics"] + known_topics)
    with col2:
        search = st.text_input("Search vignette or question")
    filters = (topic_filter, search)
    if st.session_state.get("library_filters") != filters:
        st.session_state["library_filters"] = filters
        st.session_state["library_page"] = 0
    page_no = st.session_state.get("library_page", 0)

    try:
        scenarios, total = db.list_scenarios(
            user_id,
            page=page_no,
            topic=None if topic_filter == "All topics" else topic_filter,
            query=search,
        )
    except Exception as e:
        st.error(f"Could not load scenarios: {e}")
        st.stop()

    page_count = max(1, math.ceil(total / SCENARIO_PAGE_SIZE))
    st.caption(f"{total} scenarios • page {page_no + 1} of {page_count}")
    if not scenarios:
        st.info("No scenarios yet. Generate some from the Practice page.")
    for s in scenarios:
        with st.expander(f"{s.topic} • {s.question}"):
            st.write(s.vignette)
            if st.button("Open in trainer", key=f"open_{s.id}"):
                open_in_trainer(s)

    col1, col2 = st.columns(2)
    with col1:
        if st.button("← Previous", disabled=page_no == 0):
            st.session_state["library_page"] = page_no - 1
            st.rerun()
    with col2:
        if st.button("Next →", disabled=page_no + 1 >= page_count):
            st.session_state["library_page"] = page_no + 1
            st.rerun()

# ----- Progress -----
elif page == "Progress":
    st.header("My Progress")
    try:
        summary = tracker.summary()
        col1, col2, col3 = st.columns(3)
        with col1:
            st.metric("Topics practiced", summary.topics)
        with col2:
            st.metric("Attempts", summary.attempts)
        with col3:
            st.metric("Overall accuracy", f"{summary.overall_accuracy:.0%}")
        weak = tracker.top_weak_topics(10)
        if weak:
            st.subheader("Weakest topics")
            st.table([{"topic": r.topic, "accuracy": f"{r.accuracy:.0%}", "attempts": r.attempts} for r in weak])
        history = db.get_session_history(user_id)
        if history:
            st.subheader("Recent exams")
            st.table([
                {
                    "started": (s.get("started_at") or "")[:16].replace("T", " "),
                    "status": s.get("status"),
                    "score": f"{s.get('correct_count') or 0} / {s.get('total') or 0}",
                }
                for s in history
            ])
        if st.button("Train weakest topic", type="primary"):
            st.query_params["page"] = "Practice"
            st.query_params["target"] = tracker.weakest_topic()
            st.rerun()
    except Exception as e:
        st.error(f"Could not load progress. Check DB and .env (SUPABASE_URL, SUPABASE_KEY). {e}")
