from functools import lru_cache

from ..accounts.directory import SqlAccountDirectory
from ..config import settings
from ..db.link_store import LinkStore
from ..db.session import get_primary_sessionmaker, get_replica_sessionmaker
from ..domains import load_federation_options
from ..identity.manager import DomainManager
from ..providers.registry import default_registry


@lru_cache
def get_link_store() -> LinkStore:
    return LinkStore(get_primary_sessionmaker(), get_replica_sessionmaker())


@lru_cache
def get_account_directory() -> SqlAccountDirectory:
    return SqlAccountDirectory(get_primary_sessionmaker(), get_replica_sessionmaker())


@lru_cache
def get_domain_manager() -> DomainManager:
    return DomainManager(
        load_federation_options(settings.domains_file),
        default_registry(),
        get_link_store(),
        get_account_directory(),
    )
