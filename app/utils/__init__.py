"""
Utility package exports
"""

from app.utils.helpers import flatten_list, strip_ref_name, first_non_empty, truncate_text, is_http_url

__all__ = ["flatten_list", "strip_ref_name", "first_non_empty", "truncate_text", "is_http_url"]
