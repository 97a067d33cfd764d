"""gitlineage.common - 公共工具"""

from .redaction import IdentityHider, redact_sensitive_text, truncate_bytes

__all__ = ["IdentityHider", "redact_sensitive_text", "truncate_bytes"]
