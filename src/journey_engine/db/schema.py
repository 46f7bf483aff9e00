"""Database schema for journey state and the behavioral metrics it reads.

All timestamps are stored as ISO-8601 strings in UTC so that lexical
comparison matches chronological order.
"""

JOURNEY_SCHEMA = """
-- One row per user stage, created once at bootstrap
CREATE TABLE IF NOT EXISTS user_stages (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    persona TEXT NOT NULL,
    stage_code TEXT NOT NULL,
    title TEXT NOT NULL,
    subtitle TEXT,
    stage_type TEXT NOT NULL,
    color_hex TEXT,
    position INTEGER NOT NULL,
    requirements_json TEXT NOT NULL DEFAULT '{}',
    xp_total INTEGER NOT NULL DEFAULT 0,
    is_unlocked INTEGER NOT NULL DEFAULT 0,
    unlocked_at TEXT,
    completed_at TEXT,
    created_at TEXT NOT NULL,
    UNIQUE (user_id, position)
);

CREATE INDEX IF NOT EXISTS idx_user_stages_user ON user_stages(user_id, position);

-- Tasks owned by a stage; is_completed only ever goes 0 -> 1
CREATE TABLE IF NOT EXISTS user_stage_tasks (
    id TEXT PRIMARY KEY,
    stage_id TEXT NOT NULL REFERENCES user_stages(id),
    user_id TEXT NOT NULL,
    key_code TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    condition_json TEXT NOT NULL,
    points INTEGER NOT NULL DEFAULT 0,
    position INTEGER NOT NULL,
    is_completed INTEGER NOT NULL DEFAULT 0,
    completed_at TEXT,
    UNIQUE (stage_id, key_code)
);

CREATE INDEX IF NOT EXISTS idx_user_stage_tasks_stage ON user_stage_tasks(stage_id, position);

-- Points ledger, at most one award per task
CREATE TABLE IF NOT EXISTS user_points (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    stage_id TEXT NOT NULL,
    task_id TEXT NOT NULL UNIQUE,
    points INTEGER NOT NULL,
    reason TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_user_points_user_created ON user_points(user_id, created_at);
"""

METRICS_SCHEMA = """
CREATE TABLE IF NOT EXISTS meals (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    logged_at TEXT NOT NULL,
    calories REAL NOT NULL DEFAULT 0,
    protein_g REAL NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_meals_user_logged ON meals(user_id, logged_at);

CREATE TABLE IF NOT EXISTS weigh_ins (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    logged_at TEXT NOT NULL,
    weight_kg REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_weigh_ins_user_logged ON weigh_ins(user_id, logged_at);

CREATE TABLE IF NOT EXISTS habit_checks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    habit TEXT NOT NULL DEFAULT '',
    checked_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_habit_checks_user_checked ON habit_checks(user_id, checked_at);

CREATE TABLE IF NOT EXISTS education_reads (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    article_id TEXT NOT NULL,
    read_at TEXT NOT NULL
);

-- Targets are nullable: NULL means missing, never zero
CREATE TABLE IF NOT EXISTS nutrition_targets (
    user_id TEXT PRIMARY KEY,
    protein_g REAL,
    calories_kcal REAL,
    updated_at TEXT NOT NULL
);
"""
