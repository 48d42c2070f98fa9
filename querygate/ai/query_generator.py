"""
AI query path -- natural-language question -> query text -> governed execution.

The generator only produces text.  That text is treated exactly like any
other untrusted ad-hoc query: sanitize, validate, apply row-level policies,
execute.  With ``execute=False`` it is only sanitised and validated.
"""
from __future__ import annotations

from querygate.ai.llm_client import call_llm
from querygate.catalog.schema import SchemaInfo
from querygate.core.errors import GenerationError, UnsafeQueryError
from querygate.core.logging import get_logger
from querygate.engine.context import SecurityContext
from querygate.engine.service import QueryResponse, QueryService, QueryState
from querygate.governance.sql_safety import check_query

logger = get_logger(__name__)

_MAX_PROMPT_TABLES = 40

_QUERY_LANGUAGE = {"saas": "SOQL"}

_SYSTEM_PROMPT = (
    "You translate analytics questions into a single read-only {language} "
    "SELECT statement for a governed query gateway.  Use only the tables and "
    "columns you are given; row-level security is applied after you answer, "
    "so never add tenant or user filters yourself."
)

_PROMPT = """\
Backend kind: {kind}
Available tables:
{tables}

Write one read-only SELECT statement answering the question below.
Use only the tables and columns listed.  Return at most {max_rows} rows.
Respond with the query in a ```sql fenced block and nothing else.

Question: {question}
"""


def build_prompt(question: str, schema: SchemaInfo, kind: str, max_rows: int) -> str:
    """Schema-aware prompt listing each table with its typed columns."""
    lines = []
    for table in schema.tables[:_MAX_PROMPT_TABLES]:
        cols = ", ".join(f"{c.name} {c.type}" for c in table.columns)
        lines.append(f"  - {table.qualified_name}({cols})")
    return _PROMPT.format(
        kind=kind,
        tables="\n".join(lines) or "  (none)",
        max_rows=max_rows,
        question=question.strip(),
    )


def system_prompt(kind: str) -> str:
    return _SYSTEM_PROMPT.format(language=_QUERY_LANGUAGE.get(kind, "SQL"))


def generate_query(
    question: str,
    connection_id: str,
    context: SecurityContext,
    service: QueryService,
    execute: bool = True,
    provider: str | None = None,
    tables: list[str] | None = None,
) -> QueryResponse:
    """Ask the LLM for a query and route it through the governed ad-hoc path.

    Parameters
    ----------
    question:
        Natural-language question.
    connection_id:
        Connection to generate for (its live schema is put in the prompt).
    context:
        Caller's security context; row-level policies apply to the result.
    service:
        The query service that executes the text.
    execute:
        False returns the validated text without running it.
    provider:
        Override the configured LLM provider.
    tables:
        Explicit table context used to select row-level policies.
    """
    logger.info("generate_query | connection=%s | user=%s | execute=%s",
                connection_id, context.user_id, execute)

    schema_resp = service.fetch_schema(connection_id)
    if not schema_resp.success:
        return QueryResponse(success=False, state=QueryState.FAILED, error=schema_resp.error)

    config = service.store.get_connection(connection_id)
    prompt = build_prompt(question, schema_resp.schema, config.kind, service.settings.max_query_rows)
    try:
        raw_text = call_llm(prompt, provider=provider, system=system_prompt(config.kind))
    except (RuntimeError, NotImplementedError) as exc:
        logger.warning("LLM call failed: %s", exc)
        return QueryResponse(
            success=False, state=QueryState.FAILED, error=GenerationError(str(exc)).to_dict(),
        )

    if execute:
        return service.execute_ad_hoc_query(raw_text, connection_id, context, tables=tables)

    try:
        cleaned = check_query(raw_text)
    except UnsafeQueryError as exc:
        return QueryResponse(
            success=False, state=QueryState.FAILED, error=exc.to_dict(), query_text=exc.query_text,
        )
    return QueryResponse(success=True, state=QueryState.VALIDATED, query_text=cleaned)
