"""
Org and metadata discovery through the platform CLI.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sfmigrator.commands.runner import CommandRunner
from sfmigrator.core.cancellation import CancellationToken
from sfmigrator.core.types import OrgContext
from sfmigrator.exceptions import CommandError, ValidationError
from sfmigrator.pipelines.deployment import FOLDER_TYPES
from sfmigrator.utils.logging import get_logger

logger = get_logger("sfmigrator.services")

# Result groups of `sf org list`
ORG_GROUPS = ("nonScratchOrgs", "sandboxes", "devHubs", "scratchOrgs", "other")


@dataclass(frozen=True)
class OrgSummary:
    alias: str | None
    username: str
    instance_url: str | None = None
    connected_status: str | None = None
    is_sandbox: bool = False
    is_scratch: bool = False
    is_default: bool = False

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> OrgSummary:
        return cls(
            alias=payload.get("alias") or None,
            username=str(payload.get("username", "")),
            instance_url=payload.get("instanceUrl"),
            connected_status=payload.get("connectedStatus"),
            is_sandbox=bool(payload.get("isSandbox", False)),
            is_scratch=bool(payload.get("isScratch", False)),
            is_default=bool(payload.get("isDefaultUsername", False)),
        )

    @property
    def name(self) -> str:
        """Alias when set, otherwise the username."""
        return self.alias or self.username


@dataclass(frozen=True)
class MetadataType:
    xml_name: str
    directory_name: str | None = None
    in_folder: bool = False
    suffix: str | None = None
    child_xml_names: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> MetadataType:
        return cls(
            xml_name=str(payload.get("xmlName", "")),
            directory_name=payload.get("directoryName"),
            in_folder=bool(payload.get("inFolder", False)),
            suffix=payload.get("suffix"),
            child_xml_names=tuple(payload.get("childXmlNames") or ()),
        )


class OrgService:
    """Lists authenticated orgs and resolves an alias to an OrgContext."""

    def __init__(self, runner: CommandRunner, cli: str = "sf"):
        self.runner = runner
        self.cli = cli

    async def list_orgs(self, token: CancellationToken | None = None) -> list[OrgSummary]:
        """All orgs known to the CLI, deduplicated by username, in CLI order."""
        result = await self.runner.execute(self.cli, ["org", "list"], token) or {}
        seen: set[str] = set()
        orgs: list[OrgSummary] = []
        for group in ORG_GROUPS:
            for entry in result.get(group) or []:
                org = OrgSummary.from_payload(entry)
                if org.username and org.username not in seen:
                    seen.add(org.username)
                    orgs.append(org)
        return orgs

    async def get_context(self, alias: str, token: CancellationToken | None = None) -> OrgContext:
        """
        Resolve connection details for ``alias``.

        Raises:
            ValidationError: empty alias
            CommandError: the CLI output lacks the access token, instance URL or API version
        """
        if not alias:
            raise ValidationError("Org alias is required")
        details = await self.runner.execute(self.cli, ["org", "display", "--target-org", alias], token) or {}

        access_token = details.get("accessToken")
        instance_url = details.get("instanceUrl")
        api_version = details.get("apiVersion") or details.get("instanceApiVersion")
        if not (access_token and instance_url and api_version):
            raise CommandError(f"Incomplete connection details for org {alias}; try re-authenticating")

        logger.debug(f"Resolved org {alias} at {instance_url} (API v{api_version})")
        return OrgContext(
            instance_url=instance_url, access_token=access_token, api_version=str(api_version), alias=alias
        )


class MetadataService:
    """Lists metadata types, folders and members of an org."""

    def __init__(self, runner: CommandRunner, cli: str = "sf"):
        self.runner = runner
        self.cli = cli

    async def list_metadata_types(self, alias: str, token: CancellationToken | None = None) -> list[MetadataType]:
        result = await self.runner.execute(self.cli, ["org", "list", "metadata-types", "--target-org", alias], token)
        objects = (result or {}).get("metadataObjects") or []
        return sorted((MetadataType.from_payload(entry) for entry in objects), key=lambda t: t.xml_name)

    async def list_folders(
        self, alias: str, metadata_type: str, token: CancellationToken | None = None
    ) -> list[str]:
        """Folder names of a folder-scoped type (e.g. EmailTemplate -> EmailFolder members)."""
        folder_type = FOLDER_TYPES.get(metadata_type)
        if folder_type is None:
            raise ValidationError(f"Metadata type {metadata_type} is not folder-scoped")
        entries = await self._list_metadata(alias, folder_type, None, token)
        return sorted(entry["fullName"] for entry in entries if entry.get("fullName"))

    async def list_members(
        self,
        alias: str,
        metadata_type: str,
        folder: str | None = None,
        token: CancellationToken | None = None,
    ) -> list[str]:
        """Member names of a type; for folder-scoped types, the item names inside ``folder``."""
        if folder is not None and metadata_type not in FOLDER_TYPES:
            raise ValidationError(f"Metadata type {metadata_type} is not folder-scoped")
        entries = await self._list_metadata(alias, metadata_type, folder, token)

        names = []
        for entry in entries:
            full_name = entry.get("fullName")
            if not full_name:
                continue
            if folder is not None:
                full_name = full_name.removeprefix(f"{folder}/")
            names.append(full_name)
        return sorted(names)

    async def _list_metadata(
        self, alias: str, metadata_type: str, folder: str | None, token: CancellationToken | None
    ) -> list[dict[str, Any]]:
        args = ["org", "list", "metadata", "--metadata-type", metadata_type, "--target-org", alias]
        if folder is not None:
            args.extend(["--folder", folder])
        result = await self.runner.execute(self.cli, args, token)
        # The CLI returns a bare object for a single member
        if result is None:
            return []
        if isinstance(result, dict):
            return [result]
        return [entry for entry in result if isinstance(entry, dict)]
