SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied_at REAL NOT NULL
);

-- Providers: on-chain registered operators of an off-chain service
CREATE TABLE IF NOT EXISTS providers (
    domain     TEXT NOT NULL,
    address    TEXT NOT NULL,
    url        TEXT NOT NULL DEFAULT '',
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    PRIMARY KEY (domain, address)
);

-- Plans: subscription tiers mirrored from provider catalogs
CREATE TABLE IF NOT EXISTS plans (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    domain     TEXT NOT NULL,
    provider   TEXT NOT NULL,
    plan_id    TEXT NOT NULL,
    name       TEXT NOT NULL,
    status     TEXT NOT NULL DEFAULT 'ACTIVE',
    days_left  INTEGER NOT NULL DEFAULT 0,
    quantity   INTEGER NOT NULL DEFAULT 0,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    UNIQUE (domain, provider, plan_id),
    FOREIGN KEY (domain, provider) REFERENCES providers(domain, address) ON DELETE CASCADE
);

-- Plan channels: notification delivery channels, owned per plan
CREATE TABLE IF NOT EXISTS plan_channels (
    plan_ref INTEGER NOT NULL,
    name     TEXT NOT NULL,
    origin   TEXT,
    PRIMARY KEY (plan_ref, name),
    FOREIGN KEY (plan_ref) REFERENCES plans(id) ON DELETE CASCADE
);

-- Plan prices: one decimal price per rate symbol, owned per plan
CREATE TABLE IF NOT EXISTS plan_prices (
    plan_ref INTEGER NOT NULL,
    rate_id  TEXT NOT NULL,
    price    TEXT NOT NULL,
    PRIMARY KEY (plan_ref, rate_id),
    FOREIGN KEY (plan_ref) REFERENCES plans(id) ON DELETE CASCADE
);

-- Subscriptions: created by SubscriptionCreated, refreshed from the provider
CREATE TABLE IF NOT EXISTS subscriptions (
    domain               TEXT NOT NULL,
    hash                 TEXT NOT NULL,
    provider             TEXT NOT NULL,
    consumer             TEXT NOT NULL,
    plan_ref             INTEGER,
    upstream_id          TEXT NOT NULL DEFAULT '',
    status               TEXT NOT NULL,
    paid                 INTEGER NOT NULL DEFAULT 0,
    notification_balance INTEGER NOT NULL DEFAULT 0,
    expiration_date      TEXT NOT NULL DEFAULT '',
    price                TEXT NOT NULL DEFAULT '0',
    rate_id              TEXT NOT NULL DEFAULT '',
    topics_json          TEXT NOT NULL DEFAULT '[]',
    signature            TEXT NOT NULL DEFAULT '',
    previous_subscription TEXT,
    created_at           REAL NOT NULL,
    updated_at           REAL NOT NULL,
    PRIMARY KEY (domain, hash),
    FOREIGN KEY (domain, provider) REFERENCES providers(domain, address) ON DELETE CASCADE,
    FOREIGN KEY (plan_ref) REFERENCES plans(id) ON DELETE SET NULL
);

-- Stakes: accumulated wei totals per (account, token)
CREATE TABLE IF NOT EXISTS stakes (
    domain     TEXT NOT NULL,
    account    TEXT NOT NULL,
    token      TEXT NOT NULL,
    symbol     TEXT NOT NULL,
    total      TEXT NOT NULL DEFAULT '0',
    updated_at REAL NOT NULL,
    PRIMARY KEY (domain, account, token)
);

-- Rates: fiat conversion per token symbol, fed externally
CREATE TABLE IF NOT EXISTS rates (
    token      TEXT PRIMARY KEY,
    usd        TEXT,
    eur        TEXT,
    btc        TEXT,
    ars        TEXT,
    cny        TEXT,
    krw        TEXT,
    jpy        TEXT,
    updated_at REAL NOT NULL
);

-- Storage offers: one per provider address
CREATE TABLE IF NOT EXISTS offers (
    provider         TEXT PRIMARY KEY,
    capacity         TEXT,
    maximum_duration TEXT,
    created_at       REAL NOT NULL,
    updated_at       REAL NOT NULL
);

-- Offer prices: amount per billing period
CREATE TABLE IF NOT EXISTS offer_prices (
    provider TEXT NOT NULL,
    period   TEXT NOT NULL,
    amount   TEXT NOT NULL,
    PRIMARY KEY (provider, period),
    FOREIGN KEY (provider) REFERENCES offers(provider) ON DELETE CASCADE
);

-- Block tracker: precache/live cursor per contract
CREATE TABLE IF NOT EXISTS block_tracker (
    service              TEXT PRIMARY KEY,
    last_fetched_block   INTEGER,
    last_processed_block INTEGER,
    updated_at           REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_plans_provider ON plans(domain, provider);
CREATE INDEX IF NOT EXISTS idx_subscriptions_consumer ON subscriptions(domain, consumer);
CREATE INDEX IF NOT EXISTS idx_stakes_account ON stakes(domain, account);
"""
