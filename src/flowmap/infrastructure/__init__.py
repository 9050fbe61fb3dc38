"""Infrastructure domain: configuration, path set, change detection, index store.

Note: ``flowmap.infrastructure.indexer`` is not re-exported here because it
depends on the extractor and graph domains; import it directly::

    from flowmap.infrastructure.indexer import Indexer
"""

from flowmap.infrastructure.change_detector import ChangeSet, diff
from flowmap.infrastructure.config import IndexerConfig, config_from_dict, load_config
from flowmap.infrastructure.index_store import RunLock, load, save, store_path
from flowmap.infrastructure.pathset import PathEntry, resolve

__all__ = [
    "ChangeSet",
    "IndexerConfig",
    "PathEntry",
    "RunLock",
    "config_from_dict",
    "diff",
    "load",
    "load_config",
    "resolve",
    "save",
    "store_path",
]
