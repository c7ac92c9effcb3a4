"""记忆索引命令行工具

对指定工作区执行同步、检索、读取和状态查看。

用法:
    python run.py <workspace> sync [--force]
    python run.py <workspace> search "query" [-n 10]
    python run.py <workspace> get memory/2024-06-01.md [--from 1] [--lines 20]
    python run.py <workspace> status
"""
import argparse
import asyncio
import sys
from pathlib import Path

# 添加项目根目录到路径
sys.path.insert(0, str(Path(__file__).parent))

from config.logging import setup_logging
from config.settings import reload_settings
from services.errors import MemoryIndexError
from services.memory_index import MemoryIndexManager
from services.memory_tools import MemoryTools


# ANSI 颜色代码
class Colors:
    """终端颜色"""
    OKBLUE = '\033[94m'
    OKCYAN = '\033[96m'
    OKGREEN = '\033[92m'
    WARNING = '\033[93m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'
    BOLD = '\033[1m'
    GRAY = '\033[90m'

    DISABLED = False


def c(color: str, text: str) -> str:
    """为文本添加颜色"""
    if Colors.DISABLED or not sys.stdout.isatty():
        return text
    return f"{color}{text}{Colors.ENDC}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Workspace memory index")
    parser.add_argument("workspace", help="Workspace directory holding MEMORY.md / memory/")
    parser.add_argument("--agent", default="default", help="Agent ID (default: default)")
    parser.add_argument("--config", default="config/memory.yaml", help="YAML config file")

    commands = parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync", help="Index changed memory files")
    sync.add_argument("--force", action="store_true", help="Re-index every file")

    search = commands.add_parser("search", help="Search memories")
    search.add_argument("query")
    search.add_argument("-n", "--max-results", type=int, default=None)

    get = commands.add_parser("get", help="Read a memory file")
    get.add_argument("path")
    get.add_argument("--from", dest="from_line", type=int, default=None)
    get.add_argument("--lines", type=int, default=None)

    commands.add_parser("status", help="Show index status")
    return parser


def print_sync_stats(stats) -> None:
    """打印同步结果"""
    color = Colors.OKGREEN if stats.status == "success" else Colors.WARNING
    print(c(color, f"✓ 同步完成 ({stats.status})"))
    print(c(Colors.GRAY, f"  扫描文件: {stats.files_scanned}  更新: {stats.files_updated}  删除: {stats.files_removed}"))
    print(c(Colors.GRAY, f"  新增分块: {stats.chunks_added}  移除分块: {stats.chunks_removed}  重试嵌入: {stats.chunks_retried}"))
    if stats.embedding_failures:
        print(c(Colors.WARNING, f"  嵌入失败批次: {stats.embedding_failures}"))
    for error in stats.errors:
        print(c(Colors.FAIL, f"  ✗ {error}"))


def print_status(status) -> None:
    """打印索引状态"""
    print(c(Colors.BOLD, "  索引状态:"))
    print(c(Colors.GRAY, f"    数据库: {c(Colors.OKBLUE, status.db_path)}"))
    print(c(Colors.GRAY, f"    文件: {status.files}  分块: {status.chunks}  待同步: {status.dirty}"))
    print(c(Colors.GRAY, f"    嵌入: {c(Colors.OKCYAN, status.provider)} / {status.model} (请求: {status.requested_provider})"))
    if status.fallback_reason:
        print(c(Colors.WARNING, f"    回退: {status.fallback_reason}"))
    print(c(Colors.GRAY, f"    缓存: {status.cache.entries} 条 (上限 {status.cache.max_entries})"))
    vector = "可用" if status.vector.available else f"不可用 {status.vector.load_error or ''}"
    print(c(Colors.GRAY, f"    向量: {vector} (维度 {status.vector.dims})"))


async def run_command(args) -> int:
    settings = reload_settings(args.config)
    setup_logging(settings.logging.level, settings.logging.log_file or None)

    config = settings.memory_search.model_copy(
        update={"sync": settings.memory_search.sync.model_copy(update={"watch": False})}
    )

    manager = await MemoryIndexManager.create(args.workspace, args.agent, config)
    try:
        if args.command == "sync":
            print_sync_stats(await manager.sync(force=args.force))
        elif args.command == "search":
            print(await MemoryTools(manager).memory_search(args.query, args.max_results))
        elif args.command == "get":
            print(await MemoryTools(manager).memory_get(args.path, args.from_line, args.lines))
        elif args.command == "status":
            print_status(await manager.status())
    finally:
        await manager.close()
    return 0


def main():
    """主函数"""
    args = build_parser().parse_args()

    try:
        sys.exit(asyncio.run(run_command(args)))
    except MemoryIndexError as e:
        print(c(Colors.FAIL, f"✗ {e}"))
        sys.exit(1)


if __name__ == "__main__":
    main()
