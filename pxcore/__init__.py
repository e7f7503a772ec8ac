"""
pxcore
======
PX-file tables with multi-language metadata, PX-web classifications and a
cross-table percent-change validator.
"""
from pxcore.classification import (
    ClassificationStore,
    aggregate,
    bind_variable,
    build_classification,
    export_classification,
    load_classification,
)
from pxcore.document import Document, add_totals, from_microdata
from pxcore.errors import (
    DuplicateCodeError,
    IncompleteAggregationError,
    InvalidBindingError,
    InvalidLanguageTransitionError,
    LanguageMismatchError,
    MalformedHeaderError,
    NonFiniteComparisonError,
    PxError,
    ThresholdExceededError,
    UnknownDomainError,
    UnknownLanguageError,
    UnresolvedDomainError,
    ValidationFailure,
)
from pxcore.languages import get_languages, main_language, set_languages, untranslated_fields
from pxcore.models import (
    Classification,
    LocalizedText,
    ValidationConfig,
    ValidationResult,
    Variable,
)
from pxcore.pxfile import parse, read_px, serialize, write_px
from pxcore.translation import (
    attach_data,
    export_for_translation,
    import_from_translation,
    read_data_sheet,
)
from pxcore.validator import (
    TableProvider,
    check_threshold,
    compare_tables,
    compare_with_reference,
    compute_percent_change,
    join,
    regroup,
    setup_logging,
    summarize,
    validate_config,
)

__version__ = "0.1.0"
