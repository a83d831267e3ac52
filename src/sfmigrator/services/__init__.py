"""Org and metadata discovery."""

from sfmigrator.services.orgs import MetadataService, MetadataType, OrgService, OrgSummary

__all__ = ["MetadataService", "MetadataType", "OrgService", "OrgSummary"]
