"""
Built-in Skills — Find, version and organize files through the core

Skill             Class      Modes
fuzzy_search      Safe       Find
drive_index       Safe       Find
version_history   Safe       all
version_restore   Sensitive  all
file_archive      Sensitive  all
file_organize     Sensitive  Find

Every path a skill touches must lie under the session's allowed_dirs.
Mutations go through SafeFileOps only.
"""

import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..core.file_ops import ActionKind
from ..core.versions import format_size
from ..errors import CurrentMatches, Internal, InvalidInput, NotFound, OperationBlocked
from ..utils.paths import is_path_in_allowed_dirs
from .base import (
    FileResult, Mode, PermissionLevel, ResultType, Skill, SkillContext, SkillInput,
    SkillOutput, SuggestedAction, require_param,
)
from .registry import SkillRegistry

DEFAULT_SEARCH_LIMIT = 20

DELETE_PATTERNS = (
    "delete", "remove", "erase", "trash", "get rid of", "throw away", "eliminate",
    "destroy", "wipe", "clear out", "purge", "discard", "dispose", "rm ", "rm -", "unlink",
)


def _path_schema(extra: Optional[Dict[str, Any]] = None, required: Tuple[str, ...] = ("path",)):
    properties = {"path": {"type": "string", "description": "Absolute path to the file"}}
    properties.update(extra or {})
    return {"type": "object", "properties": properties, "required": list(required)}


def checked_path(ctx: SkillContext, text: str) -> Path:
    """Resolve a user-supplied path and require it to be inside allowed_dirs."""
    path = ctx.resolve_path(text)
    if not is_path_in_allowed_dirs(path, ctx.allowed_dirs):
        raise OperationBlocked(f"Path `{text}` is outside the allowed folders.")
    return path


def _services(ctx: SkillContext, name: str):
    service = getattr(ctx.services, name, None)
    if service is None:
        raise Internal(f"The {name.replace('_', ' ')} service is not available")
    return service


def _versions(ctx: SkillContext):
    if ctx.services.versions is not None:
        return ctx.services.versions
    return _services(ctx, "file_ops").versions


# =============================================================================
# Find
# =============================================================================

class FuzzySearchSkill(Skill):
    id = "fuzzy_search"
    name = "Fuzzy File Search"
    description = "Search indexed files by name with fuzzy matching (like fzf)"
    permission_level = PermissionLevel.SAFE
    modes = (Mode.FIND,)

    def input_schema(self) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "File name or words to look for"},
                "limit": {"type": "integer", "description": "Maximum results"},
            },
            "required": ["query"],
        }

    def validate_input(self, input: SkillInput) -> None:
        if not input.param_or_query("query"):
            raise InvalidInput("Search query cannot be empty")
        limit = input.params.get("limit", DEFAULT_SEARCH_LIMIT)
        if not isinstance(limit, int) or limit < 1:
            raise InvalidInput("limit must be a positive integer")

    async def execute(self, input: SkillInput, ctx: SkillContext) -> SkillOutput:
        query = input.param_or_query("query")
        limit = input.params.get("limit", DEFAULT_SEARCH_LIMIT)
        index = _services(ctx, "index")

        ctx.progress(f"Searching for '{query}'")
        results = await index.semantic_search(query, client=ctx.services.embeddings, limit=limit)

        output = SkillOutput(ResultType.MIXED, text=format_search_results(query, results),
                             data=[r.to_dict() for r in results])
        if results:
            top = results[0]
            output.with_suggestion(SuggestedAction(
                f"Show versions of {top.name}", "version_history", {"path": str(top.path)}))
        output.with_suggestion(SuggestedAction("Refine search", self.id, {"query": query}))
        return output


def format_search_results(query: str, results) -> str:
    if not results:
        return f"No files found matching '{query}'"
    lines = [f"Found {len(results)} files matching '{query}':", ""]
    for i, result in enumerate(results, 1):
        modified = result.modified_at.strftime("%Y-%m-%d %H:%M") if result.modified_at else "?"
        lines.append(f"{i}. {result.name} ({int(result.score * 100)}%)")
        lines.append(f"   {format_size(result.size_bytes)} | {modified}")
        lines.append(f"   {result.path}")
        lines.append("")
    return "\n".join(lines).rstrip()


class DriveIndexSkill(Skill):
    id = "drive_index"
    name = "Index Drive"
    description = "Scan a folder and add its files to the search index"
    permission_level = PermissionLevel.SAFE
    modes = (Mode.FIND,)

    def input_schema(self) -> Dict[str, Any]:
        return _path_schema({"drive_id": {"type": "string", "description": "Label for this drive"}})

    def validate_input(self, input: SkillInput) -> None:
        require_param(input, "path")

    async def execute(self, input: SkillInput, ctx: SkillContext) -> SkillOutput:
        path = checked_path(ctx, input.param_or_query("path"))
        if not path.exists():
            raise NotFound(f"Directory not found: {path}")
        if not path.is_dir():
            raise InvalidInput(f"'{path}' is a file, not a directory")

        drive_id = input.params.get("drive_id") or path.name or str(path)
        index = _services(ctx, "index")

        ctx.progress(f"Indexing {path}")
        stats = await index.scan_async(path, drive_id)
        total = index.file_count()

        text = (f"Indexed {stats.indexed} of {stats.total_files} files from '{path}'\n"
                f"Errors: {stats.errors}\n\nTotal files in index: {total}")
        output = SkillOutput.data_result(text, {
            "path": str(path),
            "drive_id": drive_id,
            "stats": stats.to_dict(),
            "total_in_index": total,
        })
        return output.with_suggestion(SuggestedAction("Search files", "fuzzy_search"))


# =============================================================================
# Versions
# =============================================================================

class VersionHistorySkill(Skill):
    id = "version_history"
    name = "Version History"
    description = "List saved versions of a file"
    permission_level = PermissionLevel.SAFE
    modes = Mode.all()

    def input_schema(self) -> Dict[str, Any]:
        return _path_schema()

    def validate_input(self, input: SkillInput) -> None:
        require_param(input, "path")

    async def execute(self, input: SkillInput, ctx: SkillContext) -> SkillOutput:
        path = checked_path(ctx, input.param_or_query("path"))
        versions = _versions(ctx).list_versions(path)
        if not versions and not path.exists():
            raise NotFound(f"File not found: {path}")

        output = SkillOutput.data_result(format_versions(path.name, versions), {
            "file_path": str(path),
            "file_name": path.name,
            "version_count": len(versions),
            "versions": [
                dict(v.to_dict(), relative_time=v.relative_time(), size=v.formatted_size())
                for v in versions
            ],
        })
        if len(versions) > 1:
            output.with_suggestion(SuggestedAction(
                "Restore previous version", "version_restore", {"path": str(path)}))
        return output


def format_versions(file_name: str, versions) -> str:
    if not versions:
        return (f"No saved versions found for '{file_name}'.\n\n"
                "Versions are saved automatically when files change through Little Helper.")
    lines = [f"Version history for '{file_name}'", f"{len(versions)} versions found", ""]
    for version in reversed(versions):
        marker = " <- current" if version.is_current else ""
        lines.append(f"  Version {version.version_number}{marker}")
        lines.append(f"    {version.relative_time()} | {version.formatted_size()}")
        lines.append(f"    {version.description}")
        lines.append("")
    lines.append('To restore a version, say "restore to version N".')
    return "\n".join(lines)


_RESTORE_QUERY = re.compile(r"(?:restore\s+)?(?P<path>\S+)?.*?\bversion\s+(?P<version>\d+)", re.I)


def parse_restore_query(query: str) -> Tuple[Optional[str], Optional[int]]:
    """Pull (path, version) out of text like 'restore notes.txt to version 2'."""
    match = _RESTORE_QUERY.search(query.strip())
    if not match:
        return None, None
    path = match.group("path")
    if path and path.lower() in ("to", "version"):
        path = None
    return path, int(match.group("version"))


class VersionRestoreSkill(Skill):
    id = "version_restore"
    name = "Restore Version"
    description = "Restore a file to a previous version (the current state is kept as a version)"
    permission_level = PermissionLevel.SENSITIVE
    modes = Mode.all()

    def input_schema(self) -> Dict[str, Any]:
        return _path_schema({"version": {"type": "integer", "description": "Version number"}},
                            required=("path", "version"))

    def _target(self, input: SkillInput) -> Tuple[str, int]:
        path = input.params.get("path")
        version = input.params.get("version")
        if not path or version is None:
            parsed_path, parsed_version = parse_restore_query(input.query)
            path = path or parsed_path
            version = version if version is not None else parsed_version
        if not path:
            raise InvalidInput("Which file should be restored?")
        if version is None:
            raise InvalidInput(f"Which version of '{path}' should be restored?")
        try:
            return path, int(version)
        except (TypeError, ValueError):
            raise InvalidInput(f"Version must be a number, got {version!r}")

    def validate_input(self, input: SkillInput) -> None:
        self._target(input)

    async def execute(self, input: SkillInput, ctx: SkillContext) -> SkillOutput:
        text, number = self._target(input)
        path = checked_path(ctx, text)
        store = _versions(ctx)
        target = store.get_version(path, number)

        try:
            snapshot = store.restore_version(path, number)
        except CurrentMatches:
            return SkillOutput.text_result(
                f"{path.name} is already at version {number}.\n\n"
                "Choose a different version to restore.")

        if ctx.services.audit is not None:
            ctx.services.audit.log_file_operation(
                path, f"File restored to version {number}", self.id)

        output = SkillOutput.data_result(
            f"Restored '{path.name}' to version {number}\n\n"
            f"  From: {target.relative_time()}\n"
            f"  Description: {target.description}\n\n"
            "Your previous version was saved automatically.",
            {
                "file_path": str(path),
                "file_name": path.name,
                "restored_version": number,
                "restored_from": target.timestamp.isoformat(),
                "saved_as": snapshot.version_number if snapshot else None,
            },
        )
        return output.with_file(FileResult(path, ActionKind.MODIFIED))


# =============================================================================
# Organize
# =============================================================================

class FileArchiveSkill(Skill):
    id = "file_archive"
    name = "Archive File"
    description = "Move a file into the dated archive (files are never deleted)"
    permission_level = PermissionLevel.SENSITIVE
    modes = Mode.all()

    def input_schema(self) -> Dict[str, Any]:
        return _path_schema()

    def validate_input(self, input: SkillInput) -> None:
        require_param(input, "path")

    async def execute(self, input: SkillInput, ctx: SkillContext) -> SkillOutput:
        path = checked_path(ctx, input.param_or_query("path"))
        action = _services(ctx, "file_ops").archive(path, skill_id=self.id)
        return SkillOutput.text_result(
            f"Archived '{path.name}' to {action.to_path.parent}\n\n"
            "Archived files can be moved back at any time."
        ).with_file(FileResult.from_action(action))


def is_deletion_request(query: str) -> bool:
    lowered = query.lower()
    return any(pattern in lowered for pattern in DELETE_PATTERNS)


class FileOrganizeSkill(Skill):
    id = "file_organize"
    name = "Organize Files"
    description = "Move a file to another folder or name (never deletes)"
    permission_level = PermissionLevel.SENSITIVE
    modes = (Mode.FIND,)

    def input_schema(self) -> Dict[str, Any]:
        return _path_schema({"destination": {"type": "string",
                                             "description": "Target folder or file path"}},
                            required=("path", "destination"))

    def validate_input(self, input: SkillInput) -> None:
        if is_deletion_request(input.query):
            return
        if not input.params.get("path") or not input.params.get("destination"):
            raise InvalidInput("Both 'path' and 'destination' are required")

    async def execute(self, input: SkillInput, ctx: SkillContext) -> SkillOutput:
        source_text = input.params.get("path") or ""
        if is_deletion_request(input.query):
            output = SkillOutput.text_result(deletion_refusal(source_text or "the file"))
            if source_text:
                output.with_suggestion(SuggestedAction(
                    "Archive instead", "file_archive", {"path": source_text}))
            return output

        source = checked_path(ctx, source_text)
        destination = checked_path(ctx, input.params["destination"])
        if destination.is_dir():
            destination = destination / source.name

        action = _services(ctx, "file_ops").move(source, destination, skill_id=self.id)
        return SkillOutput.text_result(
            f"Moved '{source.name}' to {destination}"
        ).with_file(FileResult.from_action(action))


def deletion_refusal(target: str) -> str:
    return (
        "I can't delete files. That's a safety feature to protect your data.\n\n"
        "Instead, I can:\n"
        "  - Archive the file (moves it to a dated archive folder)\n"
        "  - Move it to a different location\n\n"
        f"Would you like me to archive {target} instead? Archived files can always be restored."
    )


# =============================================================================
# Registration
# =============================================================================

def builtin_skills() -> List[Skill]:
    return [
        FuzzySearchSkill(),
        DriveIndexSkill(),
        VersionHistorySkill(),
        VersionRestoreSkill(),
        FileArchiveSkill(),
        FileOrganizeSkill(),
    ]


def register_builtin_skills(registry: SkillRegistry) -> SkillRegistry:
    for skill in builtin_skills():
        registry.register(skill)
    return registry
