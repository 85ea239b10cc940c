# backend.py
"""
per-request handle on the user's database (a supabase / postgrest project).

one instance is built from the credentials of a single chat request and
closed when that request ends; nothing here is shared between requests.
errors are left to propagate: the executor decides how to report them.
"""
import logging
from typing import Any, Dict, List

import httpx
from postgrest.exceptions import APIError
from supabase.client import ClientOptions, create_client

from errors import InvalidKeyError, InvalidUrlError

logger = logging.getLogger(__name__)

# a table that should never exist: a "not found" answer proves the gateway is reachable
PROBE_TABLE = "_test_"

_AUTH_FAILURE_CODES = {"401", "PGRST301", "PGRST302"}


def filter_text(value: Any) -> str:
    """render an equality filter value the way postgrest expects it"""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def is_auth_failure(error: APIError) -> bool:
    text = f"{error.message or ''} {error.code or ''}".lower()
    return (
        str(error.code) in _AUTH_FAILURE_CODES
        or "invalid api key" in text
        or "jwt" in text
        or "jws" in text
    )


class SupabaseBackend:
    def __init__(
        self,
        url: str,
        key: str,
        timeout: float = 15.0,
        sql_function: str = "exec_sql",
        transport: httpx.BaseTransport | None = None,
    ):
        self.url = url.rstrip("/")
        self.sql_function = sql_function
        # the openapi document is outside the table api, so it gets a plain http client
        self._http = httpx.Client(
            timeout=timeout,
            headers={"apikey": key, "Authorization": f"Bearer {key}"},
            transport=transport,
        )
        try:
            self.client = create_client(
                self.url,
                key,
                options=ClientOptions(
                    postgrest_client_timeout=timeout,
                    auto_refresh_token=False,
                    persist_session=False,
                ),
            )
        except Exception as e:
            # create_client validates url and key shape before any network call
            self._http.close()
            if "url" in str(e).lower():
                raise InvalidUrlError(str(e)) from e
            raise InvalidKeyError(str(e)) from e

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    def close(self):
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ------------------------------------------------------------------
    # connection check
    # ------------------------------------------------------------------

    def probe(self):
        """
        one harmless query to check the credential.

        raises InvalidKeyError when the gateway rejects the key and
        InvalidUrlError when the host can't be reached. any other api
        error (the probe table not existing, typically) counts as success.
        """
        try:
            self.client.table(PROBE_TABLE).select("*").limit(1).execute()
        except APIError as e:
            if is_auth_failure(e):
                raise InvalidKeyError(e.message or "invalid api key") from e
            logger.debug("probe answered with api error: %s", e.message)
        except httpx.HTTPError as e:
            raise InvalidUrlError(f"could not reach {self.url}: {e}") from e

    # ------------------------------------------------------------------
    # introspection
    # ------------------------------------------------------------------

    def list_collections(self) -> List[str] | None:
        """
        table names from the gateway's openapi document.

        returns None when the document can't be fetched or read, so the
        caller can fall back to probing.
        """
        try:
            resp = self._http.get(f"{self.url}/rest/v1/")
            resp.raise_for_status()
            document = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("schema document unavailable: %s", e)
            return None
        if not isinstance(document, dict):
            return None

        tables = []
        for path in document.get("paths") or {}:
            if not path.startswith("/") or "{" in path or path.startswith("/rpc/"):
                continue
            name = path[1:]
            if name and name != "rpc":
                tables.append(name)
        return tables

    # ------------------------------------------------------------------
    # table operations
    # ------------------------------------------------------------------

    def select_rows(
        self,
        table: str,
        columns: str = "*",
        filter_column: str | None = None,
        filter_value: Any = None,
        limit: int | None = None,
    ) -> List[Dict[str, Any]]:
        query = self.client.table(table).select(columns)
        if filter_column is not None:
            query = query.eq(filter_column, filter_text(filter_value))
        if limit is not None:
            query = query.limit(limit)
        return query.execute().data or []

    def insert_rows(self, table: str, rows: Dict[str, Any] | List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return self.client.table(table).insert(rows).execute().data or []

    def update_rows(
        self, table: str, values: Dict[str, Any], filter_column: str, filter_value: Any
    ) -> List[Dict[str, Any]]:
        return (
            self.client.table(table)
            .update(values)
            .eq(filter_column, filter_text(filter_value))
            .execute()
            .data
            or []
        )

    def delete_rows(self, table: str, filter_column: str, filter_value: Any) -> List[Dict[str, Any]]:
        return (
            self.client.table(table)
            .delete()
            .eq(filter_column, filter_text(filter_value))
            .execute()
            .data
            or []
        )

    def execute_sql(self, sql: str) -> Any:
        """call the optional sql function installed by the setup script"""
        return self.client.rpc(self.sql_function, {"query": sql}).execute().data
