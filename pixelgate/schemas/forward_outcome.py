"""
Result of one forwarding attempt (or of a failure that stopped the pipeline
before forwarding). Closes the audit record and drives the caller's response.
"""
from typing import Any, Optional
from pydantic import BaseModel

from pixelgate.utils.error_taxonomy import ErrorCategory, Resolution, resolution_for


class ForwardOutcome(BaseModel):
    success: bool
    category: Optional[ErrorCategory] = None
    resolution: Optional[Resolution] = None
    http_status: Optional[int] = None
    upstream_body: Optional[Any] = None
    detail: Optional[Any] = None

    @classmethod
    def ok(cls, upstream_body: Any, http_status: int = 200) -> "ForwardOutcome":
        return cls(success=True, upstream_body=upstream_body, http_status=http_status)

    @classmethod
    def failure(
        cls,
        category: ErrorCategory,
        detail: Any = None,
        http_status: Optional[int] = None,
        upstream_body: Any = None,
        upstream_code: Optional[int] = None,
    ) -> "ForwardOutcome":
        return cls(
            success=False,
            category=category,
            resolution=resolution_for(category, http_status, upstream_code),
            http_status=http_status,
            upstream_body=upstream_body,
            detail=detail,
        )

    def audit_detail(self) -> dict:
        """What the audit record keeps: the upstream body on success, the structured error otherwise."""
        if self.success:
            return {"http_status": self.http_status, "response": self.upstream_body}
        return {
            "category": self.category.value if self.category else None,
            "resolution": self.resolution.value if self.resolution else None,
            "http_status": self.http_status,
            "error": self.detail,
            "response": self.upstream_body,
        }
