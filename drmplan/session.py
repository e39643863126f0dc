"""Sessions bundle everything that is needed to materialize expressions: the configuration, the physical operator library
and the checkpoint manager.

Use `make_session` to create a new session. Sessions are registered in the global `SessionPool`, such that
`DrmLike.checkpoint()` can find them without having to pass the manager around explicitly.
"""
from __future__ import annotations

import json
import os
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from . import util
from ._core import StorageLevel
from .checkpoint import CheckpointManager, PartitioningTagGenerator
from .logical import Checkpoint
from .physical import LocalOperatorLibrary, PhysicalOperatorLibrary
from .util.errors import ConfigurationError, StateError

LocalMaster = "local"
"""Master URL of in-process sessions. These do not require a Mahout installation."""

DefaultConfigFile = ".drmplan_session.json"
"""Name of the session config file that is used if it exists in the current working directory."""

KryoSerializer = "org.apache.spark.serializer.KryoSerializer"
KryoRegistrator = "org.apache.mahout.sparkbindings.io.MahoutKryoRegistrator"

_ClasspathJarPatterns = [re.compile(pattern) for pattern in (r".*mahout-math-.*\.jar", r".*mahout-math-scala-.*\.jar",
                                                             r".*mahout-core-.*\.jar", r".*mahout-spark-.*\.jar")]
_TestJarPattern = re.compile(r".*-tests.jar")
_MinClasspathEntries = 10


@dataclass(frozen=True)
class SessionConfig:
    """Describes how a session talks to the cluster.

    Attributes
    ----------
    master_url : str
        The master to connect to. *local* sessions run in-process.
    app_name : str
        The name of the application, as shown by the cluster
    jars : tuple[str, ...]
        The jars that have to be shipped to the workers. Empty for local sessions.
    settings : dict[str, str]
        Additional cluster settings, e.g. the serializer
    """
    master_url: str
    app_name: str
    jars: tuple[str, ...] = ()
    settings: dict[str, str] = field(default_factory=dict)

    @property
    def is_local(self) -> bool:
        return self.master_url == LocalMaster

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Provides a specific setting."""
        return self.settings.get(key, default)

    def __json__(self) -> util.jsondict:
        return {"master_url": self.master_url, "app_name": self.app_name, "jars": list(self.jars),
                "settings": dict(self.settings)}


class DrmSession:
    """A session provides access to a physical operator library and the checkpoint manager on top of it.

    Parameters
    ----------
    config : SessionConfig
        The configuration that the session was created with
    library : PhysicalOperatorLibrary
        The library that executes all plans of the session
    manager : CheckpointManager
        The manager that materializes expressions. It has to use the same library.
    """

    def __init__(self, config: SessionConfig, library: PhysicalOperatorLibrary, manager: CheckpointManager) -> None:
        if manager.library is not library:
            raise ValueError("Checkpoint manager must use the physical library of the session")
        self._config = config
        self._library = library
        self._manager = manager
        self._closed = False

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def library(self) -> PhysicalOperatorLibrary:
        return self._library

    @property
    def manager(self) -> CheckpointManager:
        """Get the checkpoint manager of the session. Fails if the session is already closed."""
        if self._closed:
            raise StateError(f"Session '{self._config.app_name}' is already closed")
        return self._manager

    @property
    def closed(self) -> bool:
        return self._closed

    def parallelize(self, matrix: Any, num_partitions: int = 1, *, keys: Optional[Sequence[Any]] = None,
                    storage_level: StorageLevel = StorageLevel.MemoryOnly) -> Checkpoint:
        """Distributes an in-core matrix. See `CheckpointManager.parallelize` for details."""
        return self.manager.parallelize(matrix, num_partitions, keys=keys, storage_level=storage_level)

    def close(self) -> None:
        """Releases all checkpoints of the session and removes it from the session pool."""
        if self._closed:
            return
        self._manager.clear()
        self._closed = True
        SessionPool.get_instance().remove_session(self)

    def __enter__(self) -> DrmSession:
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def __repr__(self) -> str:
        return str(self)

    def __str__(self) -> str:
        return f"DrmSession({self._config.app_name} @ {self._config.master_url})"


_SESSION_POOL: Optional[SessionPool] = None


class SessionPool:
    """The session pool allows different parts of the code base to easily obtain the current session.

    The pool follows the singleton pattern. Use `get_instance` to retrieve the pool instance. As long as there is just a
    single session, it can be accessed via `current_session`.
    """

    @staticmethod
    def get_instance() -> SessionPool:
        """Provides access to the singleton session pool, creating a new pool instance if necessary."""
        global _SESSION_POOL
        if _SESSION_POOL is None:
            _SESSION_POOL = SessionPool()
        return _SESSION_POOL

    def __init__(self) -> None:
        self._pool: dict[str, DrmSession] = {}

    def current_session(self) -> DrmSession:
        """Provides the session that is currently stored in the pool, provided there is just one.

        Raises
        ------
        StateError
            If there is no session in the pool
        ValueError
            If there are multiple sessions in the pool
        """
        if not self._pool:
            raise StateError("No session registered. Use make_session() to create one, or pass a manager explicitly.")
        if len(self._pool) > 1:
            raise ValueError(f"Multiple sessions registered: {list(self._pool)}. Use retrieve_session() instead.")
        return next(iter(self._pool.values()))

    def register_session(self, key: str, session: DrmSession) -> str:
        """Stores a new session in the pool.

        If the key is already in use, it is suffixed by a counter. The actual key is returned.
        """
        orig_key, instance_idx = key, 2
        while key in self._pool:
            key = f"{orig_key} - {instance_idx}"
            instance_idx += 1
        self._pool[key] = session
        return key

    def retrieve_session(self, key: str) -> DrmSession:
        """Provides the session that is registered under a specific key. Raises a `KeyError` for unknown keys."""
        return self._pool[key]

    def remove_session(self, session: DrmSession) -> None:
        """Removes a session from the pool. Sessions that are not pooled are ignored."""
        for key in [key for key, pooled in self._pool.items() if pooled is session]:
            self._pool.pop(key)

    def empty(self) -> bool:
        return len(self._pool) == 0

    def clear(self) -> None:
        """Removes all currently registered sessions from the pool. The sessions are not closed."""
        self._pool.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._pool

    def __len__(self) -> int:
        return len(self._pool)

    def __repr__(self) -> str:
        return str(self)

    def __str__(self) -> str:
        return f"SessionPool {self._pool}"


def resolve_mahout_home(mahout_home: Optional[str | Path] = None, *, config_file: str | Path = "") -> Path:
    """Determines the Mahout installation directory.

    The following sources are tried in order:

    1. the `mahout_home` argument, if it is given
    2. the *mahout_home* key of the JSON `config_file`, if the parameter is supplied. If the file does not exist, an error is
       raised.
    3. the *mahout_home* key of the default config file *.drmplan_session.json* in the current working directory
    4. the *MAHOUT_HOME* environment variable

    Raises
    ------
    ConfigurationError
        If none of the sources provides the directory, or if the config file is missing or malformed
    """
    if mahout_home:
        return Path(mahout_home)

    if config_file:
        config_file = Path(config_file)
        if not config_file.is_file():
            raise ConfigurationError(f"Session config file '{config_file}' does not exist. Your working directory is "
                                     f"{os.getcwd()}.")
        home = _read_config_file(config_file)
    elif Path(DefaultConfigFile).is_file():
        home = _read_config_file(Path(DefaultConfigFile))
    else:
        home = os.getenv("MAHOUT_HOME")

    if not home:
        raise ConfigurationError("MAHOUT_HOME is required to spawn mahout-based jobs. Please either supply the directory "
                                 "directly, put it into a session config file, or set the MAHOUT_HOME environment variable.")
    return Path(home)


def _read_config_file(config_file: Path) -> Optional[str]:
    try:
        with open(config_file, "r") as f:
            contents = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Session config file '{config_file}' is not valid JSON") from e
    if not isinstance(contents, dict):
        raise ConfigurationError(f"Session config file '{config_file}' must contain a JSON object")
    return contents.get("mahout_home")


def discover_classpath(mahout_home: str | Path) -> list[str]:
    """Obtains the classpath of a Mahout installation via its *bin/mahout classpath* command.

    The command may print arbitrary diagnostics before the actual classpath. The first line that consists of more than ten
    path-separated entries is taken to be the classpath.

    Raises
    ------
    ConfigurationError
        If the *mahout* script is not executable, or if its output does not contain a classpath
    """
    executable = Path(mahout_home) / "bin" / "mahout"
    if not executable.is_file() or not os.access(executable, os.X_OK):
        raise ConfigurationError(f"Cannot execute {executable.absolute()}.")

    result = util.run_cmd(executable.absolute(), "classpath")
    for line in result.lines():
        entries = line.strip().split(os.pathsep)
        if len(entries) > _MinClasspathEntries:
            return entries
    raise ConfigurationError('Unable to read output from "mahout classpath"')


def select_jars(classpath: Iterable[str]) -> list[str]:
    """Selects the jars from a classpath that have to be shipped to the workers (excluding test jars)."""
    return [entry for entry in classpath
            if any(pattern.fullmatch(entry) for pattern in _ClasspathJarPatterns)
            and not _TestJarPattern.fullmatch(entry)]


def make_session(master_url: str = LocalMaster, app_name: str = "drmplan", custom_jars: Iterable[str] = (), *,
                 mahout_home: Optional[str | Path] = None, config_file: str | Path = "",
                 library: Optional[PhysicalOperatorLibrary] = None,
                 tag_generator: Optional[PartitioningTagGenerator] = None, private: bool = False,
                 verbose: bool = False) -> DrmSession:
    """Creates a new session and registers it in the `SessionPool`.

    Local sessions run in-process and do not require any setup. For all other masters, the jars of the Mahout installation
    are discovered (see `resolve_mahout_home` and `discover_classpath`) and shipped along with the `custom_jars`.

    Parameters
    ----------
    master_url : str, optional
        The master to connect to. Defaults to *local*.
    app_name : str, optional
        The name of the application. This is also the key under which the session is registered.
    custom_jars : Iterable[str], optional
        Additional jars to ship to the workers
    mahout_home : Optional[str | Path], optional
        The Mahout installation directory. Only required for non-local masters.
    config_file : str | Path, optional
        A JSON file that contains the Mahout installation directory under the *mahout_home* key
    library : Optional[PhysicalOperatorLibrary], optional
        The library that executes the plans. Defaults to a new `LocalOperatorLibrary`.
    tag_generator : Optional[PartitioningTagGenerator], optional
        The source of partitioning tags of the checkpoint manager
    private : bool, optional
        If true, skips registration of the new session on the `SessionPool`.
    verbose : bool, optional
        Whether the session setup and all checkpoints should be logged

    Returns
    -------
    DrmSession
        The session

    Raises
    ------
    ConfigurationError
        If a non-local session is requested, but the Mahout installation cannot be found or used
    """
    log = util.make_logger(verbose, prefix=util.timestamp)
    jars: list[str] = []
    if master_url != LocalMaster:
        home = resolve_mahout_home(mahout_home, config_file=config_file)
        jars = select_jars(discover_classpath(home)) + list(custom_jars)
        log("Mahout jars:", *jars, sep="\n  ")

    config = SessionConfig(master_url, app_name, tuple(jars),
                           {"spark.serializer": KryoSerializer, "spark.kryo.registrator": KryoRegistrator})
    library = library if library is not None else LocalOperatorLibrary()
    manager = CheckpointManager(library, tag_generator=tag_generator, verbose=verbose)
    session = DrmSession(config, library, manager)
    if not private:
        key = SessionPool.get_instance().register_session(app_name, session)
        log("Registered session", session, "as", repr(key))
    return session
