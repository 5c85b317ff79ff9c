"""Print the Supabase schema for EMT Trainer (run it in the Supabase SQL Editor)."""
import argparse

SCHEMA_SQL = """
-- Per-topic running accuracy (one row per learner + topic)
CREATE TABLE IF NOT EXISTS performance (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id TEXT NOT NULL,
    topic VARCHAR(80) NOT NULL,
    accuracy DOUBLE PRECISION NOT NULL DEFAULT 0 CHECK (accuracy BETWEEN 0 AND 1),
    attempts INT NOT NULL DEFAULT 0 CHECK (attempts >= 0),
    last_practiced TIMESTAMPTZ DEFAULT NOW(),
    UNIQUE(user_id, topic)
);

-- Validated AI-generated scenarios, append-only, newest wins per topic
CREATE TABLE IF NOT EXISTS generated_scenarios (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id TEXT NOT NULL,
    topic VARCHAR(80) NOT NULL,
    domain VARCHAR(40),
    vignette TEXT NOT NULL CHECK (char_length(vignette) >= 40),
    cues JSONB NOT NULL,
    question TEXT NOT NULL,
    choices JSONB NOT NULL,
    reasoning_steps JSONB NOT NULL,
    tags JSONB DEFAULT '[]'::jsonb,
    difficulty VARCHAR(10),
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- Hand-authored item bank
CREATE TABLE IF NOT EXISTS items (
    id VARCHAR(64) PRIMARY KEY,
    domain VARCHAR(40) NOT NULL,
    topic VARCHAR(80) NOT NULL,
    vignette TEXT NOT NULL,
    cues JSONB NOT NULL,
    question TEXT NOT NULL,
    choices JSONB NOT NULL,
    reasoning_steps JSONB NOT NULL,
    tags JSONB DEFAULT '[]'::jsonb,
    difficulty VARCHAR(10),
    is_exam_eligible BOOLEAN DEFAULT FALSE,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- Exam sessions
CREATE TABLE IF NOT EXISTS exam_sessions (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id TEXT NOT NULL,
    status VARCHAR(20) DEFAULT 'in_progress',
    item_count INT NOT NULL,
    correct_count INT,
    total INT,
    started_at TIMESTAMPTZ DEFAULT NOW(),
    ended_at TIMESTAMPTZ
);

-- Exam answers (one row per question that reached Submitted)
CREATE TABLE IF NOT EXISTS exam_session_items (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    session_id UUID NOT NULL REFERENCES exam_sessions(id) ON DELETE CASCADE,
    item_id VARCHAR(64) NOT NULL,
    order_index INT NOT NULL,
    selected_choice_id CHAR(1) CHECK (selected_choice_id IS NULL OR selected_choice_id IN ('A','B','C','D')),
    time_spent_seconds INT,
    created_at TIMESTAMPTZ DEFAULT NOW(),
    UNIQUE(session_id, order_index)
);

CREATE INDEX IF NOT EXISTS idx_performance_user_id ON performance(user_id);
CREATE INDEX IF NOT EXISTS idx_generated_scenarios_lookup ON generated_scenarios(user_id, topic, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_items_exam_eligible ON items(is_exam_eligible);
CREATE INDEX IF NOT EXISTS idx_exam_sessions_user_id ON exam_sessions(user_id);
CREATE INDEX IF NOT EXISTS idx_exam_session_items_session_id ON exam_session_items(session_id);
"""


def schema_statements() -> list[str]:
    return [s.strip() for s in SCHEMA_SQL.split(";") if s.strip()]


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Print the EMT Trainer Supabase schema.")
    parser.add_argument("--list", action="store_true", help="Only list statement summaries")
    args = parser.parse_args()
    if args.list:
        for i, stmt in enumerate(schema_statements(), 1):
            head = next(line for line in stmt.splitlines() if not line.startswith("--"))
            print(f"{i:2d}. {head[:70]}")
    else:
        print("Run this SQL in Supabase SQL Editor (app.supabase.com > SQL Editor > New Query):")
        print(SCHEMA_SQL)
