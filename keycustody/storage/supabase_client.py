from __future__ import annotations

from typing import Any, Dict, List, Optional
import json
from urllib import request, parse, error
import re

import logging
from ..config import AppSettings, ConfigManager
from ..errors import PersistenceError
from .backend import Match, Row


class SupabaseClient:
    """PostgREST access to the employees/keys/transactions tables of a Supabase project."""

    def __init__(self, config: ConfigManager | None = None, settings: AppSettings | None = None) -> None:
        self.log = logging.getLogger("SupabaseClient")
        self.config = config or ConfigManager()
        self.settings = settings or self.config.load()
        key = self.settings.supabase_anon_key
        url = (self.settings.supabase_url or "").rstrip("/")
        if not key or not url:
            raise PersistenceError("Supabase URL and anon key are required in settings.")
        self.base_url = f"{url}/rest/v1"
        self.timeout = float(self.settings.http_timeout or 20.0)
        self.page_size = 1000
        self.headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Prefer": "return=representation",
        }

    def _table_url(self, table_name: str) -> str:
        table_segment = parse.quote(table_name, safe="")
        return f"{self.base_url}/{table_segment}"

    @staticmethod
    def _filters(match: Optional[Match]) -> Dict[str, str]:
        # PostgREST horizontal filtering: col=eq.value / col=is.null
        params: Dict[str, str] = {}
        for col, value in (match or {}).items():
            params[col] = "is.null" if value is None else f"eq.{value}"
        return params

    # -------------- Reads --------------
    def select_all(self, table: str) -> List[Row]:
        # PostgREST caps each response (1000 rows by default), so page until a short page
        url = self._table_url(table)
        out: List[Row] = []
        offset = 0
        while True:
            params = {
                "select": "*",
                "order": "created_at.desc,id.desc",
                "limit": str(self.page_size),
                "offset": str(offset),
            }
            page = list(self._http_json("GET", url, params=params) or [])
            out.extend(page)
            if len(page) < self.page_size:
                break
            offset += len(page)
        return out

    def get(self, table: str, row_id: str) -> Optional[Row]:
        data = self._http_json("GET", self._table_url(table), params={"select": "*", "id": f"eq.{row_id}"})
        rows = list(data or [])
        return rows[0] if rows else None

    # -------------- Writes --------------
    def insert(self, table: str, row: Row) -> Row:
        data = self._http_json("POST", self._table_url(table), body=row)
        rows = data if isinstance(data, list) else [data]
        if not rows or not rows[0]:
            raise PersistenceError(f"Insert into {table} returned no row")
        return rows[0]

    def update(self, table: str, row_id: str, fields: Row, match: Optional[Match] = None) -> Optional[Row]:
        params = {"id": f"eq.{row_id}", **self._filters(match)}
        data = self._http_json("PATCH", self._table_url(table), body=fields, params=params)
        rows = data if isinstance(data, list) else [data]
        return rows[0] if rows and rows[0] else None

    def update_where(self, table: str, fields: Row, match: Match) -> List[Row]:
        if not match:
            # an unfiltered PATCH would touch every row
            raise PersistenceError("update_where requires at least one filter")
        data = self._http_json("PATCH", self._table_url(table), body=fields, params=self._filters(match))
        return list(data or [])

    def delete(self, table: str, row_id: str) -> bool:
        data = self._http_json("DELETE", self._table_url(table), params={"id": f"eq.{row_id}"})
        return bool(data)

    # -------------- HTTP helper --------------
    def _http_json(self, method: str, url: str, body: Optional[Dict[str, Any]] = None, params: Optional[Dict[str, str]] = None) -> Any:
        if params:
            qs = parse.urlencode(params)
            sep = '&' if ('?' in url) else '?'
            url = f"{url}{sep}{qs}"
        data_bytes = None
        if body is not None:
            data_bytes = json.dumps(body).encode('utf-8')
        # log without the project ref
        safe_url = re.sub(r"https://[^/]+/", "https://PROJECT/", url)
        self.log.info("HTTP %s %s", method, safe_url)
        req = request.Request(url, data=data_bytes, method=method, headers=self.headers.copy())
        try:
            with request.urlopen(req, timeout=self.timeout) as resp:
                resp_body = resp.read().decode('utf-8')
                self.log.debug("HTTP %s %s -> %s", method, safe_url, resp.status)
                if resp_body:
                    return json.loads(resp_body)
                return None
        except error.HTTPError as e:
            try:
                detail = e.read().decode('utf-8')
            except OSError:
                detail = str(e)
            self.log.error("HTTP error %s for %s: %s", e.code, safe_url, detail)
            raise PersistenceError(f"Supabase HTTP {e.code}: {detail}", status=e.code) from e
        except (error.URLError, TimeoutError) as e:
            self.log.error("Network error for %s: %s", safe_url, e)
            raise PersistenceError(f"Supabase unreachable: {e}") from e
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Invalid JSON from Supabase: {e}") from e


__all__ = ["SupabaseClient"]
