"""
GitHub repository content resolver.

Recognizes github.com code URLs, materializes a shallow clone once per
(owner, repo, ref) and renders a tree, directory listing or file view from
the local copy. Declining (returning None) hands the URL back to the generic
extraction pipeline.
"""

import asyncio
import re
import shutil
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path
from typing import Literal
from urllib.parse import unquote, urlparse

from config.config import WebToolsConfig, get_config
from models.content import ExtractedContent
from utils.logger import get_logger

from .cancellation import CancellationToken, run_with_cancellation
from .errors import OperationAborted
from .inflight import InflightTasks

logger = get_logger(__name__)

GITHUB_HOST = "github.com"
SIZE_CHECK_TIMEOUT_S = 10.0

MAX_INLINE_FILE_CHARS = 100_000
MAX_TREE_ENTRIES = 200
README_MAX_CHARS = 8192
BINARY_SNIFF_BYTES = 512

EXPLORE_HINT = "Use file reading and shell tools at the path above to explore further."

BINARY_EXTENSIONS = frozenset({
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".svg", ".tiff", ".tif",
    ".mp3", ".mp4", ".avi", ".mov", ".mkv", ".flv", ".wmv", ".wav", ".ogg", ".webm", ".flac", ".aac",
    ".zip", ".tar", ".gz", ".bz2", ".xz", ".7z", ".rar", ".zst",
    ".exe", ".dll", ".so", ".dylib", ".bin", ".o", ".a", ".lib",
    ".woff", ".woff2", ".ttf", ".otf", ".eot",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".sqlite", ".db", ".sqlite3",
    ".pyc", ".pyo", ".class", ".jar", ".war",
    ".iso", ".img", ".dmg",
})

NOISE_DIRS = frozenset({
    "node_modules", "vendor", ".next", "dist", "build", "__pycache__",
    ".venv", "venv", ".tox", ".mypy_cache", ".pytest_cache",
    "target", ".gradle", ".idea", ".vscode",
})

# Third path segments that cloning cannot render usefully
NON_CODE_SEGMENTS = frozenset({
    "issues", "pull", "pulls", "discussions", "releases", "wiki",
    "actions", "settings", "security", "projects",
    "compare", "commits", "tags", "branches", "stargazers",
    "watchers", "network", "forks",
})

README_CANDIDATES = ("README.md", "readme.md", "README", "README.txt")

_FULL_SHA_RE = re.compile(r"^[0-9a-f]{40}$")


def _is_safe_name(segment: str) -> bool:
    """A single path component usable as a directory name under the clone root."""
    return bool(segment) and segment not in (".", "..") and "/" not in segment and "\\" not in segment


@dataclass(frozen=True)
class GitHubUrlInfo:
    owner: str
    repo: str
    type: Literal["root", "blob", "tree"]
    ref: str | None = None
    ref_is_full_sha: bool = False
    path: str | None = None


def parse_github_url(url: str) -> GitHubUrlInfo | None:
    """
    Parse a github.com URL into owner/repo/ref/path.

    Returns None for other hosts, single-segment paths, non-code pages
    (issues, pulls, ...) and any shape other than /owner/repo or
    /owner/repo/(blob|tree)/<ref>[/path].
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return None

    if not parsed.scheme or parsed.hostname != GITHUB_HOST:
        return None

    segments = [unquote(s) for s in parsed.path.split("/") if s]
    if len(segments) < 2:
        return None

    owner = segments[0]
    repo = segments[1].removesuffix(".git")
    if not (_is_safe_name(owner) and _is_safe_name(repo)):
        return None

    if len(segments) > 2 and segments[2].lower() in NON_CODE_SEGMENTS:
        return None

    if len(segments) == 2:
        return GitHubUrlInfo(owner=owner, repo=repo, type="root")

    action = segments[2]
    if action not in ("blob", "tree") or len(segments) < 4:
        return None

    ref = segments[3]
    if not _is_safe_name(ref):
        return None
    return GitHubUrlInfo(
        owner=owner,
        repo=repo,
        type=action,
        ref=ref,
        ref_is_full_sha=bool(_FULL_SHA_RE.match(ref)),
        path="/".join(segments[4:]),
    )


# ---------------------------------------------------------------------------
# External commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


CommandRunner = Callable[[list[str], float, CancellationToken | None], Awaitable[CommandResult]]


async def run_command(
    args: list[str], timeout_s: float, signal: CancellationToken | None = None
) -> CommandResult:
    """
    Run an external command without a shell; kill it on timeout or cancellation.

    Never raises for process failures: a missing executable, a non-zero exit,
    a timeout and an abort are all reported through the CommandResult.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        return CommandResult(returncode=127, stderr=f"{args[0]}: {e}")

    try:
        stdout, stderr = await run_with_cancellation(
            process.communicate(), signal=signal, timeout=timeout_s
        )
    except (OperationAborted, asyncio.TimeoutError) as e:
        with suppress(ProcessLookupError):
            process.kill()
        await process.wait()
        reason = "aborted" if isinstance(e, OperationAborted) else f"timed out after {timeout_s:g}s"
        return CommandResult(returncode=-1, stderr=f"{args[0]} {reason}")
    except asyncio.CancelledError:
        with suppress(ProcessLookupError):
            process.kill()
        raise

    return CommandResult(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace").strip(),
        stderr=stderr.decode("utf-8", errors="replace").strip(),
    )


# ---------------------------------------------------------------------------
# Clone cache
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CachedClone:
    local_path: Path
    task: "asyncio.Task[Path | None]"


class CloneCache:
    """
    Process/session-wide map of in-flight or completed clones.

    The task is inserted before cloning starts, so concurrent requests for the
    same key await one clone instead of racing their own.
    """

    def __init__(self) -> None:
        self._tasks: InflightTasks[str, Path | None] = InflightTasks()
        self._paths: dict[str, Path] = {}

    def get(self, key: str) -> CachedClone | None:
        task = self._tasks.get(key)
        if task is None:
            return None
        return CachedClone(local_path=self._paths[key], task=task)

    def start(
        self, key: str, local_path: Path, factory: Callable[[], Awaitable[Path | None]]
    ) -> CachedClone:
        task = self._tasks.start(key, factory)
        self._paths.setdefault(key, local_path)
        return CachedClone(local_path=self._paths[key], task=task)

    def discard(self, key: str) -> None:
        self._tasks.discard(key)
        self._paths.pop(key, None)

    def clear(self) -> None:
        """Remove every cached clone directory from disk and empty the cache."""
        for key, task in self._tasks.items():
            if not task.done():
                task.cancel()
            shutil.rmtree(self._paths[key], ignore_errors=True)
        self._tasks.clear()
        self._paths.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)


def cache_key(owner: str, repo: str, ref: str | None = None) -> str:
    return f"{owner}/{repo}@{ref}" if ref else f"{owner}/{repo}"


# ---------------------------------------------------------------------------
# View rendering
# ---------------------------------------------------------------------------


def format_file_size(num_bytes: int) -> str:
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    return f"{num_bytes / (1024 * 1024):.1f} MB"


def is_binary_file(file_path: Path) -> bool:
    """Known binary extension, or a NUL byte within the first 512 bytes."""
    if file_path.suffix.lower() in BINARY_EXTENSIONS:
        return True
    try:
        with open(file_path, "rb") as handle:
            head = handle.read(BINARY_SNIFF_BYTES)
    except OSError:
        return False
    return b"\x00" in head


def build_tree(root: Path) -> str:
    """Recursive, sorted listing capped at MAX_TREE_ENTRIES; noise directories are not descended."""
    entries: list[str] = []

    def walk(directory: Path, rel_path: str) -> None:
        try:
            names = sorted(p.name for p in directory.iterdir())
        except OSError:
            return

        for name in names:
            if len(entries) >= MAX_TREE_ENTRIES:
                return
            if name == ".git":
                continue

            full_path = directory / name
            rel = f"{rel_path}/{name}" if rel_path else name
            try:
                is_dir = full_path.is_dir()
            except OSError:
                continue

            if is_dir:
                if name in NOISE_DIRS:
                    entries.append(f"{rel}/  [skipped]")
                    continue
                entries.append(f"{rel}/")
                walk(full_path, rel)
            else:
                entries.append(rel)

    walk(root, "")

    if len(entries) >= MAX_TREE_ENTRIES:
        entries.append(f"... (truncated at {MAX_TREE_ENTRIES} entries)")
    return "\n".join(entries)


def build_dir_listing(directory: Path) -> str:
    try:
        names = sorted(p.name for p in directory.iterdir())
    except OSError:
        return "(directory not readable)"

    lines = []
    for name in names:
        if name == ".git":
            continue
        full_path = directory / name
        try:
            if full_path.is_dir():
                lines.append(f"  {name}/")
            else:
                lines.append(f"  {name}  ({format_file_size(full_path.stat().st_size)})")
        except OSError:
            lines.append(f"  {name}  (unreadable)")
    return "\n".join(lines)


def read_readme(root: Path) -> str | None:
    for name in README_CANDIDATES:
        readme_path = root / name
        if not readme_path.is_file():
            continue
        try:
            content = readme_path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return None
        if len(content) > README_MAX_CHARS:
            return content[:README_MAX_CHARS] + "\n\n[README truncated at 8K chars]"
        return content
    return None


def _resolve_inside(root: Path, rel_path: str) -> Path | None:
    """Join rel_path under root, refusing anything that escapes the clone."""
    candidate = (root / rel_path).resolve()
    try:
        candidate.relative_to(root.resolve())
    except ValueError:
        return None
    return candidate


def _root_fallback(lines: list[str], root: Path, rel_path: str) -> str:
    lines.append(f"Path `{rel_path}` not found in clone. Showing repository root instead.")
    lines.append("")
    lines.append("## Structure")
    lines.append(build_tree(root))
    lines.append("")
    lines.append(EXPLORE_HINT)
    return "\n".join(lines)


def render_view(local_path: Path, info: GitHubUrlInfo) -> str:
    """Render the root tree, a directory listing or a file from the local clone."""
    lines = [f"Repository cloned to: {local_path}", ""]

    if info.type == "root":
        lines.append("## Structure")
        lines.append(build_tree(local_path))
        lines.append("")
        readme = read_readme(local_path)
        if readme:
            lines.append("## README.md")
            lines.append(readme)
            lines.append("")
        lines.append(EXPLORE_HINT)
        return "\n".join(lines)

    rel_path = info.path or ""
    target = _resolve_inside(local_path, rel_path)
    if target is None or not target.exists():
        return _root_fallback(lines, local_path, rel_path)

    if target.is_dir():
        lines.append(f"## {rel_path or '/'}")
        lines.append(build_dir_listing(target))
        lines.append("")
        lines.append(EXPLORE_HINT)
        return "\n".join(lines)

    # blob pointing at a file
    size = target.stat().st_size
    if is_binary_file(target):
        ext = target.suffix.lstrip(".")
        lines.append(f"## {rel_path}")
        lines.append(
            f"Binary file ({ext}, {format_file_size(size)}). "
            "Use file reading or shell tools at the path above to inspect."
        )
        return "\n".join(lines)

    content = target.read_text(encoding="utf-8", errors="replace")
    lines.append(f"## {rel_path}")
    if len(content) > MAX_INLINE_FILE_CHARS:
        lines.append(content[:MAX_INLINE_FILE_CHARS])
        lines.append("")
        lines.append(f"[File truncated at 100K chars. Full file: {target}]")
    else:
        lines.append(content)
    lines.append("")
    lines.append(EXPLORE_HINT)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class GitHubExtractor:
    """
    Materializes GitHub repositories locally and answers URL-shaped views of them.
    """

    def __init__(
        self,
        clone_cache: CloneCache,
        config_provider: Callable[[], WebToolsConfig] = get_config,
        runner: CommandRunner = run_command,
    ):
        """
        Args:
            clone_cache: Shared cache of clone tasks for this session
            config_provider: Returns the current configuration (threshold, timeout, clone dir)
            runner: Executes external commands (gh, git); replaceable in tests
        """
        self.clone_cache = clone_cache
        self.config_provider = config_provider
        self.runner = runner

    def clone_dir(self, owner: str, repo: str, ref: str | None = None) -> Path:
        """
        Local directory for a clone.

        Raises:
            ValueError: the directory would fall outside the configured clone root
        """
        root = Path(self.config_provider().github.clone_path).resolve()
        dir_name = f"{repo}@{ref}" if ref else repo
        path = (root / owner / dir_name).resolve()
        if path == root or root not in path.parents:
            raise ValueError(f"Clone directory for {owner}/{repo} escapes {root}")
        return path

    async def check_repo_size(
        self, owner: str, repo: str, signal: CancellationToken | None = None
    ) -> int | None:
        """Repository size in KB from the GitHub API, or None if unknown."""
        result = await self.runner(
            ["gh", "api", f"repos/{owner}/{repo}", "--jq", ".size"],
            SIZE_CHECK_TIMEOUT_S,
            signal,
        )
        if not result.ok:
            logger.debug(
                "Repository size check unavailable",
                extra={"extra_fields": {"repo": f"{owner}/{repo}", "stderr": result.stderr[:300]}},
            )
            return None
        try:
            return int(result.stdout.strip())
        except ValueError:
            return None

    async def clone_repo(
        self,
        owner: str,
        repo: str,
        ref: str | None,
        signal: CancellationToken | None = None,
    ) -> Path | None:
        """
        Shallow single-branch clone: gh first, then plain git (public repos only).

        Returns:
            The local path on success, None on failure (partial directory removed)
        """
        local_path = self.clone_dir(owner, repo, ref)
        timeout_s = float(self.config_provider().github.clone_timeout_seconds)

        shutil.rmtree(local_path, ignore_errors=True)
        local_path.parent.mkdir(parents=True, exist_ok=True)

        gh_args = ["gh", "repo", "clone", f"{owner}/{repo}", str(local_path),
                   "--", "--depth", "1", "--single-branch"]
        if ref:
            gh_args += ["--branch", ref]

        git_args = ["git", "clone", "--depth", "1", "--single-branch"]
        if ref:
            git_args += ["--branch", ref]
        git_args += [f"https://github.com/{owner}/{repo}.git", str(local_path)]

        for args in (gh_args, git_args):
            result = await self.runner(args, timeout_s, signal)
            if result.ok:
                logger.info(
                    f"Cloned {owner}/{repo} with {args[0]}",
                    extra={"extra_fields": {"repo": f"{owner}/{repo}", "ref": ref, "path": str(local_path)}},
                )
                return local_path

            shutil.rmtree(local_path, ignore_errors=True)
            logger.warning(
                f"Clone of {owner}/{repo} via {args[0]} failed",
                extra={
                    "extra_fields": {
                        "repo": f"{owner}/{repo}",
                        "ref": ref,
                        "returncode": result.returncode,
                        "stderr": result.stderr[:300],
                    }
                },
            )
            if signal is not None and signal.cancelled:
                break

        return None

    async def _render(self, local_path: Path, info: GitHubUrlInfo, url: str) -> ExtractedContent:
        content = await asyncio.to_thread(render_view, local_path, info)
        title = f"{info.owner}/{info.repo} - {info.path}" if info.path else f"{info.owner}/{info.repo}"
        return ExtractedContent(url=url, title=title, content=content, error=None)

    async def _from_cached(self, cached: CachedClone, info: GitHubUrlInfo, url: str) -> ExtractedContent | None:
        # shield: a waiter being cancelled must not cancel the shared clone
        local_path = await asyncio.shield(cached.task)
        if local_path is None:
            return None
        return await self._render(local_path, info, url)

    async def extract(
        self,
        url: str,
        signal: CancellationToken | None = None,
        force_clone: bool = False,
    ) -> ExtractedContent | None:
        """
        Resolve a GitHub URL from a local clone.

        Returns:
            ExtractedContent for a rendered view or an oversized-repository notice;
            None when declining (not a code URL, full-SHA ref, clone failure)
        """
        info = parse_github_url(url)
        if info is None:
            return None

        owner, repo = info.owner, info.repo
        key = cache_key(owner, repo, info.ref)
        try:
            local_path = self.clone_dir(owner, repo, info.ref)
        except ValueError as e:
            logger.warning(str(e), extra={"extra_fields": {"url": url}})
            return None

        cached = self.clone_cache.get(key)
        if cached is not None:
            return await self._from_cached(cached, info, url)

        # Shallow clones cannot cheaply reach an arbitrary historical commit
        if info.ref_is_full_sha:
            return None

        if not force_clone:
            config = self.config_provider()
            size_kb = await self.check_repo_size(owner, repo, signal)
            if size_kb is not None:
                size_mb = size_kb / 1024
                threshold = config.github.max_repo_size_mb
                if size_mb > threshold:
                    logger.info(
                        f"Skipping clone of {owner}/{repo}: {size_mb:.0f}MB over threshold",
                        extra={"extra_fields": {"repo": f"{owner}/{repo}", "size_mb": size_mb}},
                    )
                    content = (
                        f"Repository {owner}/{repo} is {round(size_mb)}MB "
                        f"(threshold: {threshold:g}MB). Skipping clone. "
                        "Ask the user if they'd like to clone the full repo. If yes, call "
                        "fetch_content again with the same URL and add forceClone: true to the params."
                    )
                    return ExtractedContent(url=url, title=f"{owner}/{repo}", content=content, error=None)

        # Another request may have started the clone while the size check was suspended
        cached = self.clone_cache.get(key)
        if cached is not None:
            return await self._from_cached(cached, info, url)

        entry = self.clone_cache.start(
            key, local_path, lambda: self.clone_repo(owner, repo, info.ref, signal)
        )

        result: Path | None = None
        try:
            result = await asyncio.shield(entry.task)
            if result is None:
                return None
            return await self._render(result, info, url)
        finally:
            if result is None:
                self.clone_cache.discard(key)
                shutil.rmtree(local_path, ignore_errors=True)
