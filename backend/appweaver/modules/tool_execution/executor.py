"""
Tool Executor - file tools over an app's virtual filesystem (``AppFile`` rows)

Tool names are accepted with or without the ``os-`` prefix:

    write         file_path, content
    line-replace  file_path, first_replaced_line, last_replaced_line, replace, [search]
    delete        file_path
    view          file_path, [lines "a-b[,c-d]"]
    search        query, [include_pattern], [case_sensitive]
    rename        original_file_path, new_file_path

Every call ends in exactly one ``Success`` or ``Failure``; nothing raised by
a tool escapes ``execute``.
"""

import fnmatch
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from appweaver.core.database import get_session_local
from appweaver.core.exceptions import (
    AppFileNotFoundError,
    AppWeaverError,
    ToolExecutionError,
    UnknownToolError,
    ValidationError,
)
from appweaver.core.logging_config import logger
from appweaver.models.app_file import AppFile
from appweaver.modules.tool_execution.records import Failure, Success, ToolCallRequest, ToolOutcome

Handler = Callable[[AsyncSession, Dict[str, Any]], Awaitable[str]]


def canonical_tool_name(name: str) -> str:
    """'os-line-replace' / 'line_replace' -> 'line-replace'"""
    name = (name or "").strip().lower()
    if name.startswith("os-"):
        name = name[3:]
    return name.replace("_", "-")


def normalize_path(path: str) -> str:
    path = path.strip()
    while path.startswith("./"):
        path = path[2:]
    return path.lstrip("/")


def parse_line_ranges(lines: str) -> List[range]:
    """'1-10,15' -> [range(1, 11), range(15, 16)] (1-based, inclusive)"""
    ranges = []
    for part in str(lines).split(","):
        part = part.strip()
        if not part:
            continue
        try:
            if "-" in part:
                start, end = (int(value) for value in part.split("-", 1))
            else:
                start = end = int(part)
        except ValueError:
            raise ValidationError(f"Invalid line range: {part}", field="lines")
        ranges.append(range(start, end + 1))
    return ranges


def _comparable(text: str) -> str:
    return "\n".join(line.rstrip() for line in text.strip("\n").splitlines())


class ToolExecutor:
    """Runs one tool call for one app inside its own database session"""

    MAX_SEARCH_RESULTS = 100

    def __init__(self, app_id: Optional[str], session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self.app_id = str(app_id) if app_id else None
        self._session_factory = session_factory
        self._handlers: Dict[str, Handler] = {
            "write": self.write,
            "line-replace": self.line_replace,
            "delete": self.delete,
            "view": self.view,
            "search": self.search,
            "rename": self.rename,
        }

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_local()
        return self._session_factory

    async def execute(self, call: ToolCallRequest) -> ToolOutcome:
        try:
            handler = self._handlers.get(canonical_tool_name(call.name))
            if handler is None:
                raise UnknownToolError(call.name)
            if not self.app_id:
                raise ValidationError("Tool call has no app to operate on")

            async with self.session_factory() as db:
                content = await handler(db, call.arguments)
                await db.commit()

            logger.info(f"[ToolExecutor] {call.name} succeeded for app {self.app_id}")
            return Success(content)

        except AppWeaverError as e:
            logger.warning(f"[ToolExecutor] {call.name} failed: {e.message}")
            return Failure(e.message)
        except Exception as e:
            logger.log_error_with_context(e, f"ToolExecutor.{call.name}", app_id=self.app_id)
            return Failure(str(e))

    # ========== Helpers ==========

    @staticmethod
    def _require(args: Dict[str, Any], *keys: str) -> Any:
        """First present argument among ``keys`` (aliases)"""
        for key in keys:
            value = args.get(key)
            if value is not None and value != "":
                return value
        raise ValidationError(f"Missing required argument: {keys[0]}", field=keys[0])

    async def _find(self, db: AsyncSession, path: str) -> Optional[AppFile]:
        result = await db.execute(
            select(AppFile).where(AppFile.app_id == self.app_id, AppFile.path == path)
        )
        return result.scalar_one_or_none()

    async def _get(self, db: AsyncSession, path: str) -> AppFile:
        app_file = await self._find(db, path)
        if app_file is None:
            raise AppFileNotFoundError(path, self.app_id)
        return app_file

    # ========== Tools ==========

    async def write(self, db: AsyncSession, args: Dict[str, Any]) -> str:
        path = normalize_path(self._require(args, "file_path"))
        content = args.get("content")
        if content is None:
            raise ValidationError("Missing required argument: content", field="content")

        app_file = await self._find(db, path)
        if app_file is None:
            app_file = AppFile(app_id=self.app_id, path=path)
            db.add(app_file)
        app_file.set_content(str(content))

        return f"File {path} written successfully"

    async def line_replace(self, db: AsyncSession, args: Dict[str, Any]) -> str:
        path = normalize_path(self._require(args, "file_path"))
        try:
            first = int(self._require(args, "first_replaced_line", "first_line"))
            last = int(self._require(args, "last_replaced_line", "last_line"))
        except (TypeError, ValueError):
            raise ValidationError("Line numbers must be integers", field="first_replaced_line")
        replacement = args.get("replace", args.get("replacement"))
        if replacement is None:
            raise ValidationError("Missing required argument: replace", field="replace")
        search = args.get("search")

        app_file = await self._get(db, path)
        lines = (app_file.content or "").splitlines(keepends=True)

        if first < 1 or last < first or last > len(lines):
            raise ValidationError(
                f"Line range {first}-{last} is out of bounds for {path} ({len(lines)} lines)",
                field="first_replaced_line",
            )

        current = "".join(lines[first - 1:last])
        if search and _comparable(search) != _comparable(current):
            raise ToolExecutionError(
                f"Search text does not match lines {first}-{last} of {path}",
                tool_name="line-replace",
            )

        replacement = str(replacement)
        if replacement and current.endswith("\n") and not replacement.endswith("\n"):
            replacement += "\n"

        app_file.set_content("".join(lines[:first - 1]) + replacement + "".join(lines[last:]))
        return f"Lines {first}-{last} of {path} replaced successfully"

    async def delete(self, db: AsyncSession, args: Dict[str, Any]) -> str:
        path = normalize_path(self._require(args, "file_path"))
        app_file = await self._get(db, path)
        await db.delete(app_file)
        return f"File {path} deleted successfully"

    async def view(self, db: AsyncSession, args: Dict[str, Any]) -> str:
        path = normalize_path(self._require(args, "file_path"))
        app_file = await self._get(db, path)
        content = app_file.content or ""

        if not args.get("lines"):
            return content

        all_lines = content.splitlines(keepends=True)
        selected = []
        for line_range in parse_line_ranges(args["lines"]):
            start = max(line_range.start - 1, 0)
            end = min(line_range.stop - 1, len(all_lines))
            selected.extend(all_lines[start:end])
        return "".join(selected)

    async def search(self, db: AsyncSession, args: Dict[str, Any]) -> str:
        query = self._require(args, "query")
        include_pattern = args.get("include_pattern") or "*"
        flags = 0 if args.get("case_sensitive") else re.IGNORECASE
        try:
            pattern = re.compile(query, flags)
        except re.error as e:
            raise ValidationError(f"Invalid search pattern '{query}': {e}", field="query")

        result = await db.execute(
            select(AppFile).where(AppFile.app_id == self.app_id).order_by(AppFile.path)
        )

        matches = []
        truncated = False
        for app_file in result.scalars():
            if not fnmatch.fnmatch(app_file.path, include_pattern):
                continue
            for line_no, text in enumerate((app_file.content or "").splitlines(), start=1):
                if pattern.search(text):
                    if len(matches) >= self.MAX_SEARCH_RESULTS:
                        truncated = True
                        break
                    matches.append(f"{app_file.path}:{line_no}: {text.strip()}")
            if truncated:
                break

        if not matches:
            return f"No matches found for '{query}'"
        if truncated:
            matches.append(f"... results truncated at {self.MAX_SEARCH_RESULTS} matches")
        return "\n".join(matches)

    async def rename(self, db: AsyncSession, args: Dict[str, Any]) -> str:
        old_path = normalize_path(self._require(args, "original_file_path"))
        new_path = normalize_path(self._require(args, "new_file_path"))

        app_file = await self._get(db, old_path)
        if old_path != new_path and await self._find(db, new_path) is not None:
            raise ValidationError(f"File already exists: {new_path}", field="new_file_path")

        app_file.path = new_path
        return f"File renamed from {old_path} to {new_path}"
