"""Base filter contract."""

from __future__ import annotations

from abc import ABC

from agentgate.core.context import RequestContext
from agentgate.core.models import InternalRequest


class BaseFilter(ABC):
    name = "base"

    def enabled(self, req: InternalRequest, ctx: RequestContext) -> bool:
        return True

    def process_request(self, req: InternalRequest, ctx: RequestContext) -> InternalRequest:
        return req

    def report(self) -> dict:
        return {"filter": self.name, "hit": False}

    def apply(self, req: InternalRequest, ctx: RequestContext) -> InternalRequest:
        if not self.enabled(req, ctx):
            return req
        current = self.process_request(req, ctx)
        ctx.add_report(self.report())
        return current
