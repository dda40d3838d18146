from .config import (
    DEFAULT_BUCKET_NAME,
    config_errors,
    validate_config,
    get_cluster,
    check_connection
)
from .keyspace import (
    Keyspace,
    get_keyspace
)
from .base_model import (
    BaseModelCouchbase,
    BaseCouchbaseEntityData,
    DataT,
    T
)
from .transactions import run_transaction
