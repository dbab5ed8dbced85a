"""pairview.core: foundation types, config, and exceptions."""

from pairview.core.config import (
    AppConfig,
    ProviderConfig,
    StorageConfig,
    load_config,
    require_connection,
)
from pairview.core.exceptions import (
    ConfigurationInvalid,
    MalformedRecord,
    PairViewError,
    PersistenceFailure,
    SourceUnavailable,
)
from pairview.core.models import (
    ALLOWED_SEPARATORS,
    CsvFormat,
    ImportNotice,
    ImportStatus,
    InstrumentCode,
    PairConfig,
    ProviderKind,
    Sample,
    ScheduleConfig,
    SeriesStore,
    SessionWindow,
    SynthesisResult,
    TransformKind,
)

__all__ = [
    # Type aliases
    "InstrumentCode",
    # Enums
    "TransformKind",
    "ProviderKind",
    "ImportStatus",
    # Series models
    "Sample",
    "SeriesStore",
    # Config models
    "ALLOWED_SEPARATORS",
    "CsvFormat",
    "PairConfig",
    "SessionWindow",
    "ScheduleConfig",
    # Result models
    "SynthesisResult",
    "ImportNotice",
    # Config
    "AppConfig",
    "ProviderConfig",
    "StorageConfig",
    "load_config",
    "require_connection",
    # Exceptions
    "PairViewError",
    "ConfigurationInvalid",
    "SourceUnavailable",
    "MalformedRecord",
    "PersistenceFailure",
]
