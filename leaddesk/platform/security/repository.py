from __future__ import annotations

from typing import Any

from sqlalchemy.sql import Select

from leaddesk.platform.security.context import AuthContext
from leaddesk.platform.security.fls import apply_fls_read, apply_fls_read_many
from leaddesk.platform.security.rls import apply_rls_filter


class BaseRepository:
    resource = ""
    model: Any = None

    def apply_scope_query(self, query: Select[Any], ctx: AuthContext) -> Select[Any]:
        return apply_rls_filter(query, self.model, ctx)

    def apply_read_security(self, record: dict[str, Any], ctx: AuthContext) -> dict[str, Any]:
        return apply_fls_read(self.resource, record, ctx)

    def apply_read_security_many(self, records: list[dict[str, Any]], ctx: AuthContext) -> list[dict[str, Any]]:
        return apply_fls_read_many(self.resource, records, ctx)
