"""
CLI — Command-line host for the Little Helper core

Thin host: every command goes through the same components a desktop shell
would use. File commands run as skill invocations, so they are checked
against allowed_dirs, permissioned and audited like any other request.

    little-helper scan ~/Documents --drive docs
    little-helper search budget --limit 5
    little-helper versions ~/Documents/notes.txt
    little-helper restore ~/Documents/notes.txt 2
    little-helper ask "where is my tax return?" --tools
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

from . import __version__
from .config import AppPaths, RuntimeConfig, SettingsManager
from .core.audit import AuditEventType, AuditFilter, AuditLog
from .core.file_ops import SafeFileOps
from .core.index import FileIndex
from .core.preview import parse_preview_tags
from .core.versions import VersionStores
from .errors import HelperError
from .providers.base import ChatMessage, Done, Error, StreamSink, Text, ToolUseComplete
from .providers.router import ProviderRouter
from .services.embeddings import EmbeddingClient
from .skills.base import Mode, SkillContext, SkillExecution, SkillInput, SkillServices
from .skills.builtin import register_builtin_skills
from .skills.executor import SkillExecutor
from .skills.registry import SkillRegistry
from .skills.tools import dispatch_tool_call, tool_definitions, tool_result_text
from .utils.logs import configure_logging


class HelperCLI:
    """Wires the core components for one command-line session."""

    def __init__(self, paths: Optional[AppPaths] = None, mode: Mode = Mode.FIND):
        self.paths = (paths or AppPaths.from_env()).ensure()
        self.settings_manager = SettingsManager(self.paths)
        self.settings = self.settings_manager.load()

        self.config = RuntimeConfig.load(self.paths.runtime_path)
        self.config.validate()

        self.audit = AuditLog(self.paths.audit_dir, max_bytes=self.config.audit_max_bytes,
                              tail_size=self.config.audit_tail_size)
        self.versions = VersionStores(self.settings.allowed_dirs)
        self.file_ops = SafeFileOps(self.paths.archive_dir, self.audit, self.versions)
        self.index = FileIndex(self.paths.index_db, batch_size=self.config.scan_batch_size,
                               alpha=self.config.hybrid_alpha,
                               query_cache_size=self.config.query_cache_size)

        self.registry = register_builtin_skills(SkillRegistry(self.audit))
        self.registry.load_permissions(self.settings.extra.get("skill_permissions") or {})
        self.executor = SkillExecutor(self.registry, audit=self.audit,
                                      timeout=self.config.skill_timeout,
                                      max_concurrent=self.config.max_concurrent)
        self.mode = mode

    def context(self, embeddings: Optional[EmbeddingClient] = None) -> SkillContext:
        """
        A context for a command typed by the user.

        Running a command by hand counts as approving it for this session.
        """
        ctx = SkillContext(
            mode=self.mode,
            data_dir=self.paths.data_dir,
            services=SkillServices(index=self.index, file_ops=self.file_ops,
                                   versions=self.versions, embeddings=embeddings,
                                   audit=self.audit),
            allowed_dirs=self.settings.allowed_dirs,
            command_timeout=self.config.skill_timeout,
        )
        for skill in self.registry.all():
            ctx.approve_session(skill.id)
        return ctx

    def close(self) -> None:
        self.index.close()

    # -- skill-backed commands ------------------------------------------------

    def run_skill(self, skill_id: str, input: SkillInput) -> int:
        execution = asyncio.run(self.executor.invoke(skill_id, input, self.context()))
        return self.report(execution)

    @staticmethod
    def report(execution: SkillExecution) -> int:
        if not execution.succeeded:
            print(f"Error: {execution.error}", file=sys.stderr)
            return 1
        output = execution.output
        if output is not None and output.text:
            print(output.text)
        for file in output.files if output else []:
            print(f"  [{file.action.value}] {file.path}")
        return 0

    def scan(self, root: str, drive: Optional[str] = None) -> int:
        input = SkillInput(params={"path": str(Path(root).expanduser())})
        if drive:
            input.with_param("drive_id", drive)
        return self.run_skill("drive_index", input)

    def search(self, query: str, limit: int = 20, semantic: bool = False) -> int:
        input = SkillInput.from_query(query).with_param("limit", limit)
        if not semantic:
            return self.run_skill("fuzzy_search", input)

        async def run() -> SkillExecution:
            client = EmbeddingClient.from_config(self.config)
            try:
                return await self.executor.invoke("fuzzy_search", input, self.context(client))
            finally:
                await client.aclose()

        return self.report(asyncio.run(run()))

    def versions_cmd(self, path: str) -> int:
        return self.run_skill("version_history", SkillInput(params={"path": path}))

    def restore(self, path: str, version: int) -> int:
        return self.run_skill("version_restore",
                              SkillInput(params={"path": path, "version": version}))

    def archive(self, path: str) -> int:
        return self.run_skill("file_archive", SkillInput(params={"path": path}))

    # -- inspection -----------------------------------------------------------

    def audit_cmd(self, limit: int = 20, event_type: Optional[str] = None) -> int:
        filter = AuditFilter(limit=limit)
        if event_type:
            filter.event_types = {AuditEventType(event_type)}
        entries = self.audit.query(filter)
        if not entries:
            print("No audit entries.")
            return 0
        for entry in entries:
            who = f" [{entry.skill_id}]" if entry.skill_id else ""
            where = f" {entry.file_path}" if entry.file_path else ""
            stamp = entry.timestamp.strftime("%Y-%m-%d %H:%M:%S")
            print(f"{stamp} {entry.event_type.value:<11}{who} {entry.action}{where}")
        return 0

    def skills_cmd(self, mode: Optional[str] = None) -> int:
        selected = Mode(mode) if mode else self.mode
        print(f"Skills in {selected.display_name} mode:")
        for info in self.registry.skills_info_for_mode(selected):
            print(f"  {info.id:<16} {info.permission_level.value:<10} "
                  f"{info.user_permission.value:<9} {info.description}")
        return 0

    def config_cmd(self, action: Optional[str] = None, key: Optional[str] = None,
                   value: Optional[str] = None) -> int:
        if action is None:
            status = "loaded" if self.settings_manager.loaded else "defaults"
            print(f"Settings: {self.settings_manager.settings_path} ({status})")
            for name, ready in asyncio.run(self._provider_status()).items():
                print(f"  {name:<10} {'ready' if ready else 'no credentials'}")
            return 0
        if action == "get":
            result = self.settings_manager.get(key)
            if result is None:
                print(f"Unknown setting: {key}", file=sys.stderr)
                return 1
            print(result)
            return 0
        error = self.settings_manager.set(key, value)
        if error:
            print(f"Error: {error}", file=sys.stderr)
            return 1
        print(f"Set {key} = {value}")
        return 0

    async def _provider_status(self) -> Dict[str, bool]:
        async with ProviderRouter(self.settings.model, self.config) as router:
            return router.provider_status()

    # -- chat -----------------------------------------------------------------

    def ask(self, text: str, tools: bool = False) -> int:
        return asyncio.run(self._ask(text, tools))

    async def _ask(self, text: str, tools: bool) -> int:
        messages = [ChatMessage.user(text)]
        definitions = tool_definitions(self.registry, self.mode) if tools else None
        ctx = self.context()
        sink = StreamSink()
        answer: List[str] = []
        status = 0

        async with ProviderRouter(self.settings.model, self.config) as router:
            task = asyncio.ensure_future(
                router.generate_stream(messages, sink, enable_tools=tools, tools=definitions))
            async for chunk in sink:
                if isinstance(chunk, Text):
                    answer.append(chunk.text)
                    print(chunk.text, end="", flush=True)
                elif isinstance(chunk, ToolUseComplete):
                    execution = await dispatch_tool_call(chunk, self.executor, ctx)
                    print(f"\n[{chunk.name}] {tool_result_text(execution)}")
                elif isinstance(chunk, Error):
                    print(f"\nError: {chunk.message}", file=sys.stderr)
                    status = 1
                elif isinstance(chunk, Done):
                    print()
            await task

        for tag in parse_preview_tags("".join(answer)):
            print(f"Preview: {tag.render()}")
        return status


# =============================================================================
# Argument parsing
# =============================================================================

def register_parsers(subparsers) -> None:
    p = subparsers.add_parser("scan", help="Index a folder")
    p.add_argument("root", help="Folder to scan")
    p.add_argument("--drive", help="Drive label (default: folder name)")

    p = subparsers.add_parser("search", help="Search indexed files")
    p.add_argument("query", help="File name or words")
    p.add_argument("--limit", type=int, default=20, help="Maximum results (default: 20)")
    p.add_argument("--semantic", action="store_true", help="Blend in embedding similarity")

    p = subparsers.add_parser("versions", help="Show saved versions of a file")
    p.add_argument("path")

    p = subparsers.add_parser("restore", help="Restore a file to a saved version")
    p.add_argument("path")
    p.add_argument("version", type=int)

    p = subparsers.add_parser("archive", help="Move a file into the archive")
    p.add_argument("path")

    p = subparsers.add_parser("audit", help="Show recent audit entries")
    p.add_argument("--limit", type=int, default=20)
    p.add_argument("--type", dest="event_type", choices=[t.value for t in AuditEventType])

    p = subparsers.add_parser("skills", help="List skills and permissions")
    p.add_argument("--mode", dest="skills_mode", choices=[m.value for m in Mode],
                   help="Mode to list (default: the global --mode)")

    p = subparsers.add_parser("ask", help="Ask the assistant (streams the answer)")
    p.add_argument("text")
    p.add_argument("--tools", action="store_true", help="Let the model call skills")

    p = subparsers.add_parser("config", help="View or set configuration")
    config_sub = p.add_subparsers(dest="config_action")
    g = config_sub.add_parser("get", help="Print a setting")
    g.add_argument("key")
    s = config_sub.add_parser("set", help="Change a setting")
    s.add_argument("key")
    s.add_argument("value")


HANDLERS: Dict[str, Callable[[HelperCLI, argparse.Namespace], int]] = {
    "scan": lambda cli, args: cli.scan(args.root, args.drive),
    "search": lambda cli, args: cli.search(args.query, args.limit, args.semantic),
    "versions": lambda cli, args: cli.versions_cmd(args.path),
    "restore": lambda cli, args: cli.restore(args.path, args.version),
    "archive": lambda cli, args: cli.archive(args.path),
    "audit": lambda cli, args: cli.audit_cmd(args.limit, args.event_type),
    "skills": lambda cli, args: cli.skills_cmd(args.skills_mode),
    "ask": lambda cli, args: cli.ask(args.text, args.tools),
    "config": lambda cli, args: cli.config_cmd(
        args.config_action, getattr(args, "key", None), getattr(args, "value", None)),
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="little-helper",
        description="Little Helper -- local file search, versions and assistant",
    )
    parser.add_argument("--version", "-V", action="version",
                        version=f"little-helper {__version__}")
    parser.add_argument("--mode", "-m", choices=[m.value for m in Mode], default=Mode.FIND.value,
                        help="Assistant mode (default: find)")
    parser.add_argument("--log-level", help="Log level (default: LH_LOG_LEVEL or WARNING)")
    subparsers = parser.add_subparsers(dest="command", help="Commands")
    register_parsers(subparsers)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the little-helper command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    configure_logging(args.log_level)

    try:
        cli = HelperCLI(mode=Mode(args.mode))
    except (HelperError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    try:
        return HANDLERS[args.command](cli, args)
    except HelperError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    finally:
        cli.close()


if __name__ == "__main__":
    sys.exit(main())
