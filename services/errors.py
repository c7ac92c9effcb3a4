"""记忆索引错误类型

索引、嵌入、存储和文件读取各环节抛出的异常。
"""


class MemoryIndexError(Exception):
    """Base class for memory index errors."""


class EmbeddingError(MemoryIndexError):
    """Embedding provider failed, returned malformed data, or none could be used."""


class StorageError(MemoryIndexError):
    """The index store could not complete an operation."""


class InvalidPathError(MemoryIndexError):
    """A read was requested outside the memory-file allow-list."""


class ConfigError(MemoryIndexError):
    """Memory search is disabled or misconfigured."""
