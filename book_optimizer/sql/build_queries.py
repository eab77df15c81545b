"""
Parameterized SQL for loading a build snapshot.

Every query takes the build id as $1. Accounts are loaded flat (parents and
children); the data loader rolls children into their parents.

Tables:
- accounts: one row per account in the build, parent_id set on children
- opportunities: open opportunities, summed into prospect pipeline
- sales_reps: reps of the build with eligibility flags
- assignment_configuration: per-build optimization configuration (JSONB)
"""


ACCOUNT_COLUMNS = (
    "sfdc_account_id",
    "account_name",
    "parent_id",
    "is_parent",
    "hierarchy_arr",
    "arr",
    "atr",
    "owner_id",
    "owner_change_date",
    "owners_lifetime_count",
    "is_customer",
    "is_strategic",
    "sales_territory",
    "geo",
    "employees",
    "enterprise_vs_commercial",
    "expansion_tier",
    "initial_sale_tier",
    "cre_risk",
    "renewal_date",
    "pe_firm",
    "exclude_from_reassignment",
)

REP_COLUMNS = (
    "rep_id",
    "name",
    "region",
    "team_tier",
    "pe_firms",
    "is_active",
    "include_in_assignments",
    "is_manager",
    "is_strategic_rep",
    "is_backfill_source",
    "backfill_target_rep_id",
)


def get_accounts_query() -> str:
    """
    SQL returning every account of a build, parents first.

    Returns:
        str: Query with $1 = build_id.
    """
    return f"""
        SELECT {", ".join(ACCOUNT_COLUMNS)}
        FROM accounts
        WHERE build_id = $1
        ORDER BY is_parent DESC, sfdc_account_id
    """


def get_pipeline_query() -> str:
    """
    SQL summing positive opportunity net ARR per account.

    Returns:
        str: Query with $1 = build_id, yielding (sfdc_account_id, pipeline).
    """
    return """
        SELECT sfdc_account_id, SUM(net_arr) AS pipeline
        FROM opportunities
        WHERE build_id = $1
          AND net_arr > 0
        GROUP BY sfdc_account_id
    """


def get_reps_query() -> str:
    return f"""
        SELECT {", ".join(REP_COLUMNS)}
        FROM sales_reps
        WHERE build_id = $1
        ORDER BY rep_id
    """


def get_configuration_query() -> str:
    """
    SQL returning the build's optimization configuration and territory map.

    Returns:
        str: Query with $1 = build_id; zero or one row.
    """
    return """
        SELECT lp_configuration, territory_mappings
        FROM assignment_configuration
        WHERE build_id = $1
          AND account_scope = 'all'
        LIMIT 1
    """
