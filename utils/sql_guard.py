import re

_FENCE = re.compile(r"```(?:sql)?", re.IGNORECASE)
_STATEMENT_START = re.compile(r"^\s*(SELECT|WITH)\b", re.IGNORECASE | re.MULTILINE)

# Word boundaries keep columns such as updated_at from matching UPDATE
_WRITE_KEYWORDS = [
    re.compile(rf"\b{keyword}\b")
    for keyword in (
        "INSERT", "UPDATE", "DELETE", "DROP", "ALTER", "TRUNCATE",
        "CREATE", "GRANT", "REVOKE", "MERGE", "COPY", "CALL",
    )
]


def clean_sql(raw: str) -> str:
    """
    Strip what models wrap around a query: markdown fences, lead-in prose,
    trailing notes/explanations and the final semicolon.
    """
    sql = _FENCE.sub("", raw or "").strip()

    # Drop any prose before the statement itself
    match = _STATEMENT_START.search(sql)
    if match:
        sql = sql[match.start():]

    kept = []
    for line in sql.split("\n"):
        lowered = line.strip().lower()
        if lowered.startswith(("note:", "explanation:", "-- note:", "-- explanation")):
            break
        kept.append(line)

    sql = "\n".join(kept).strip()
    return re.sub(r";\s*$", "", sql)


def is_read_only_query(sql: str) -> bool:
    """True for a single SELECT (or WITH ... SELECT) statement with no write keywords"""
    normalized = (sql or "").strip().upper()
    if not normalized.startswith(("SELECT", "WITH")):
        return False

    # A second statement hiding after a semicolon
    if ";" in normalized.rstrip(";"):
        return False

    return not any(pattern.search(normalized) for pattern in _WRITE_KEYWORDS)
