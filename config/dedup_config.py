"""
Dedup engine configuration.

Static table and field sets the merge engine works against. Anything that
varies per deployment belongs in config/settings.py instead.
"""


class DedupConfig:
    """Configuration for duplicate detection and merging."""

    # Table holding one row per client identity
    CLIENT_TABLE: str = "crm_clients"

    # Every table with a client_id reference to crm_clients.id.
    # A merge relinks all of them before the duplicate row is deleted.
    DEPENDENT_TABLES: tuple[str, ...] = (
        "crm_invoices",
        "crm_messages",
        "galleries",
        "digital_files",
    )

    # Client fields filled on the primary from a duplicate when blank
    COALESCE_FIELDS: tuple[str, ...] = (
        "email",
        "phone",
        "address",
        "city",
        "state",
        "zip",
        "country",
    )

    KEY_KINDS: tuple[str, ...] = ("email", "phone")
    MODES: tuple[str, ...] = ("email", "phone", "both")
    STRATEGIES: tuple[str, ...] = ("keep-oldest", "keep-newest")

    # Upper bound for the number of groups returned by a single call
    MAX_GROUP_LIMIT: int = 1000
