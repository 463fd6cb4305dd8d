"""
DDL for the topic cache.

Applied idempotently on startup by `repository.apply_schema`.
"""

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS topics (
    id           BIGSERIAL PRIMARY KEY,
    name         TEXT NOT NULL UNIQUE,
    created_at   TIMESTAMPTZ NOT NULL DEFAULT now(),
    refreshed_at TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS photos (
    id                    BIGINT PRIMARY KEY,
    image_no              INTEGER,
    width                 INTEGER,
    height                INTEGER,
    dominant_color        TEXT,
    dominant_color_opaque TEXT,
    url                   TEXT,
    is_main               BOOLEAN,
    is_suspicious         BOOLEAN,
    full_size_url         TEXT,
    is_hidden             BOOLEAN
);

CREATE TABLE IF NOT EXISTS thumbnails (
    photo_id      BIGINT NOT NULL REFERENCES photos(id) ON DELETE CASCADE,
    type          TEXT NOT NULL,
    url           TEXT,
    width         INTEGER,
    height        INTEGER,
    original_size JSONB,
    PRIMARY KEY (photo_id, type)
);

CREATE TABLE IF NOT EXISTS items (
    id                       BIGINT PRIMARY KEY,
    title                    TEXT NOT NULL,
    price                    TEXT,
    is_visible               BOOLEAN,
    discount                 JSONB,
    currency                 TEXT,
    brand_title              TEXT,
    user_id                  BIGINT,
    user_login               TEXT,
    url                      TEXT,
    promoted                 BOOLEAN,
    photo_id                 BIGINT REFERENCES photos(id),
    favourite_count          INTEGER,
    is_favourite             BOOLEAN,
    badge                    JSONB,
    conversion               JSONB,
    service_fee              TEXT,
    total_item_price         TEXT,
    total_item_price_rounded JSONB,
    view_count               INTEGER,
    size_title               TEXT,
    content_source           TEXT,
    status                   TEXT,
    icon_badges              JSONB,
    search_tracking_params   JSONB,
    topic_id                 BIGINT NOT NULL REFERENCES topics(id),
    updated_at               TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS items_topic_id_idx ON items (topic_id);
"""
