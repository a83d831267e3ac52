"""HTTP access to the bulk job and description resources."""

from sfmigrator.api.client import RemoteApiClient, extract_error_message, to_count_query

__all__ = ["RemoteApiClient", "extract_error_message", "to_count_query"]
