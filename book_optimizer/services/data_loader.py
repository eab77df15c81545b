"""
Build snapshot loader.

Reads accounts, opportunities, reps and the optimization configuration of a
build from PostgreSQL and returns a BuildData snapshot for one account-type
batch. Child accounts are rolled into their parents (aggregate_hierarchy) so
only parents become decision variables.
"""

import json
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd
from pydantic import ValidationError

from book_optimizer.core.database import get_db_pool
from book_optimizer.core.exceptions import DataValidationError
from book_optimizer.models.enums import AssignmentType, TeamTier
from book_optimizer.models.schemas import Account, BuildData, LPConfiguration, Rep
from book_optimizer.sql.build_queries import (
    get_accounts_query,
    get_configuration_query,
    get_pipeline_query,
    get_reps_query,
)


logger = logging.getLogger(__name__)


_TIER_PATTERN = re.compile(r"tier\s*(\d)", re.IGNORECASE)


# =============================================================================
# Row Conversion
# =============================================================================

def parse_tier(label: Optional[str]) -> Optional[int]:
    """
    Extract the account tier from labels like "Expansion Tier 3".

    Returns:
        Optional[int]: 1-4, or None when absent or out of range.
    """
    if not label:
        return None
    match = _TIER_PATTERN.search(label)
    if match is None:
        return None
    tier = int(match.group(1))
    return tier if 1 <= tier <= 4 else None


def parse_team_tier(value: Optional[str]) -> Optional[TeamTier]:
    if not value:
        return None
    lookup = {tier.value.lower(): tier for tier in TeamTier}
    return lookup.get(value.strip().lower())


def rep_from_row(row: Mapping[str, Any]) -> Rep:
    return Rep(
        id=row["rep_id"],
        name=row.get("name") or "",
        region=row.get("region"),
        team_tier=parse_team_tier(row.get("team_tier")),
        is_strategic=bool(row.get("is_strategic_rep")),
        is_backfill_source=bool(row.get("is_backfill_source")),
        backfill_target_rep_id=row.get("backfill_target_rep_id"),
        is_active=row.get("is_active") is not False,
        include_in_assignments=row.get("include_in_assignments") is not False,
        pe_firms=row.get("pe_firms"),
    )


def is_eligible_rep_row(row: Mapping[str, Any]) -> bool:
    """Active, included in assignments and not a manager."""
    return (
        row.get("is_active") is not False
        and row.get("include_in_assignments") is not False
        and row.get("is_manager") is not True
    )


# =============================================================================
# Hierarchy Aggregation
# =============================================================================

def aggregate_hierarchy(
    account_rows: Sequence[Mapping[str, Any]],
    pipeline: Optional[Mapping[str, float]] = None,
) -> Tuple[List[Account], Dict[str, str]]:
    """
    Roll child accounts into their parents.

    Parent ARR is the stored hierarchy ARR when present, otherwise the
    parent's own ARR plus its children's. ATR and pipeline are always summed
    over the hierarchy. Children whose parent is not in the build are
    dropped.

    Args:
        account_rows: Flat account rows (parents and children).
        pipeline: Opportunity pipeline per account id.

    Returns:
        Tuple of (parent accounts, child id -> child name).
    """
    if not account_rows:
        return [], {}

    df = pd.DataFrame([dict(row) for row in account_rows])
    for column in ("parent_id", "is_parent", "account_name", "arr", "atr", "hierarchy_arr"):
        if column not in df.columns:
            df[column] = None
    df["pipeline"] = df["sfdc_account_id"].map(pipeline or {}).fillna(0.0)
    for column in ("arr", "atr", "pipeline"):
        df[column] = pd.to_numeric(df[column], errors="coerce").fillna(0.0)

    # Accounts without a parent_id are top-level even when is_parent is unset
    parent_mask = df["is_parent"].fillna(False).astype(bool) | df["parent_id"].isna()
    parents = df[parent_mask]
    children = df[~parent_mask & df["parent_id"].notna()]
    children = children[children["parent_id"].isin(parents["sfdc_account_id"])]

    orphans = int((~parent_mask).sum()) - len(children)
    if orphans:
        logger.warning(f"Dropped {orphans} child accounts without a parent in the build")

    child_totals = children.groupby("parent_id")[["arr", "atr", "pipeline"]].sum()
    child_ids = children.groupby("parent_id")["sfdc_account_id"].apply(list)
    child_names = {
        row["sfdc_account_id"]: row["account_name"] or ""
        for row in children[["sfdc_account_id", "account_name"]].to_dict("records")
    }

    # NaN/NaT -> None so optional fields validate
    parents = parents.astype(object).where(parents.notna(), None)

    accounts: List[Account] = []
    for row in parents.to_dict("records"):
        account_id = row["sfdc_account_id"]
        totals = child_totals.loc[account_id] if account_id in child_totals.index else None
        child_arr = float(totals["arr"]) if totals is not None else 0.0
        child_atr = float(totals["atr"]) if totals is not None else 0.0
        child_pipeline = float(totals["pipeline"]) if totals is not None else 0.0

        hierarchy_arr = row.get("hierarchy_arr")
        arr = float(hierarchy_arr) if hierarchy_arr is not None else row["arr"] + child_arr
        is_customer = bool(row.get("is_customer"))
        tier_label = row.get("expansion_tier") if is_customer else row.get("initial_sale_tier")

        accounts.append(Account(
            id=account_id,
            name=row.get("account_name") or "",
            arr=arr,
            atr=row["atr"] + child_atr,
            pipeline=row["pipeline"] + child_pipeline,
            owner_id=row.get("owner_id"),
            owner_change_date=row.get("owner_change_date"),
            owner_count=row.get("owners_lifetime_count"),
            is_customer=is_customer,
            is_strategic=bool(row.get("is_strategic")),
            territory=row.get("sales_territory"),
            region=row.get("geo"),
            employees=row.get("employees"),
            commercial_tier=row.get("enterprise_vs_commercial"),
            tier=parse_tier(tier_label),
            risk_flag=bool(row.get("cre_risk")),
            renewal_date=row.get("renewal_date"),
            pe_firm=row.get("pe_firm"),
            exclude_from_reassignment=bool(row.get("exclude_from_reassignment")),
            child_ids=list(child_ids.get(account_id, [])),
        ))

    return accounts, child_names


# =============================================================================
# Configuration
# =============================================================================

def _json_value(value: Any) -> Any:
    # asyncpg returns json/jsonb columns as text unless a codec is registered
    if isinstance(value, str):
        return json.loads(value)
    return value


def parse_configuration(row: Optional[Mapping[str, Any]]) -> LPConfiguration:
    """
    Build an LPConfiguration from an assignment_configuration row.

    Missing rows and missing keys fall back to defaults.

    Raises:
        DataValidationError: If the stored configuration is malformed.
    """
    if row is None:
        return LPConfiguration()

    try:
        raw = _json_value(row.get("lp_configuration")) or {}
        mappings = _json_value(row.get("territory_mappings")) or {}
        config = LPConfiguration.model_validate(raw)
    except (ValueError, ValidationError) as e:
        raise DataValidationError(f"Invalid optimization configuration: {e}") from e

    if mappings:
        config.territory_mappings = {**mappings, **config.territory_mappings}
    return config


# =============================================================================
# Loader
# =============================================================================

async def load_build_data(build_id: str, assignment_type: AssignmentType) -> BuildData:
    """
    Load one account-type batch of a build.

    Args:
        build_id: Build identifier.
        assignment_type: Customer or prospect batch.

    Returns:
        BuildData: Parent accounts of the batch, eligible reps and configuration.

    Raises:
        DataValidationError: If the stored configuration is malformed.
        asyncpg.PostgresError: On database failure.
    """
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        account_rows = await conn.fetch(get_accounts_query(), build_id)
        pipeline_rows = await conn.fetch(get_pipeline_query(), build_id)
        rep_rows = await conn.fetch(get_reps_query(), build_id)
        config_row = await conn.fetchrow(get_configuration_query(), build_id)

    pipeline = {row["sfdc_account_id"]: float(row["pipeline"] or 0) for row in pipeline_rows}
    accounts, child_names = aggregate_hierarchy(account_rows, pipeline)

    want_customers = assignment_type == AssignmentType.CUSTOMER
    batch = [account for account in accounts if account.is_customer == want_customers]
    batch_children = {
        child_id
        for account in batch
        for child_id in account.child_ids
    }

    child_owners = {
        row["sfdc_account_id"]: row["owner_id"]
        for row in map(dict, account_rows)
        if row["sfdc_account_id"] in batch_children and row.get("owner_id")
    }

    reps = [rep_from_row(dict(row)) for row in rep_rows if is_eligible_rep_row(dict(row))]
    config = parse_configuration(dict(config_row) if config_row is not None else None)

    logger.info(
        f"Loaded build {build_id} ({assignment_type.value}): {len(batch)} accounts, "
        f"{len(batch_children)} children, {len(reps)} eligible reps "
        f"({sum(1 for r in reps if r.is_strategic)} strategic)"
    )

    return BuildData(
        build_id=build_id,
        assignment_type=assignment_type,
        accounts=batch,
        reps=reps,
        config=config,
        child_names={k: v for k, v in child_names.items() if k in batch_children},
        child_owners=child_owners,
    )
