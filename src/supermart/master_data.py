"""Master-data workbook: template creation and row parsing.

Branches, categories, products, and staff are maintained in an Excel
workbook with one sheet per entity and a bold header row. This module writes
an empty template and turns populated sheets into typed records ready to be
upserted by the workflow layer.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

import openpyxl
from bson import ObjectId
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import log
from .data_manager import BranchRecord, CategoryRecord, ProductRecord, UserRecord
from .errors import MissingReferenceError


BRANCHES_SHEET = "Branches"
CATEGORIES_SHEET = "Categories"
PRODUCTS_SHEET = "Products"
USERS_SHEET = "Users"

SHEET_COLUMNS: Dict[str, Sequence[str]] = {
    BRANCHES_SHEET: [
        "Code",
        "Name",
        "City",
        "State",
        "Phone",
        "Email",
        "IsPrimary",
        "IsActive",
        "TaxRate",
        "Currency",
    ],
    CATEGORIES_SHEET: ["Code", "Name", "GstRate"],
    PRODUCTS_SHEET: [
        "SKU",
        "Name",
        "CategoryCode",
        "CostPrice",
        "SellingPrice",
        "MRP",
        "GstRate",
        "IsActive",
    ],
    USERS_SHEET: ["Email", "FullName", "Role", "BranchCode", "IsActive"],
}

DEFAULT_GST_RATE = Decimal("18")
SYSTEM_USER_NAME = "System Administrator"
SYSTEM_USER_ROLE = "Admin"

_TRUE_STRINGS = {"true", "yes", "y", "1"}


def create_master_workbook(
    destination: Path,
    *,
    system_user_email: Optional[str] = None,
    overwrite: bool = False,
) -> Path:
    """Create an empty master-data workbook with one sheet per entity.

    Args:
        destination (Path): Where the workbook is written.
        system_user_email (str | None): When given, a system administrator row
            is pre-filled on the ``Users`` sheet so seeding jobs have an
            auditing user.
        overwrite (bool): Replace an existing file instead of failing.

    Returns:
        Path: Resolved path of the written workbook.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is
            ``False``.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Workbook already exists: {destination}")

    wb = openpyxl.Workbook()
    if "Sheet" in wb.sheetnames:
        del wb["Sheet"]

    bold_font = Font(bold=True)
    for sheet_name, columns in SHEET_COLUMNS.items():
        ws = wb.create_sheet(title=sheet_name)
        for col_idx, column_name in enumerate(columns, 1):
            cell = ws.cell(row=1, column=col_idx)
            cell.value = column_name
            cell.font = bold_font

    if system_user_email:
        wb[USERS_SHEET].append([system_user_email, SYSTEM_USER_NAME, SYSTEM_USER_ROLE, None, True])

    destination.parent.mkdir(parents=True, exist_ok=True)
    wb.save(destination)
    log.info("Created master-data workbook '%s'", destination)
    return destination


def open_master_workbook(path: Path) -> Workbook:
    """Load a master-data workbook with cached formula values.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
    """

    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Workbook not found: {path}")
    return openpyxl.load_workbook(path, data_only=True)


def iter_sheet_rows(workbook: Workbook, sheet_name: str) -> Iterable[Dict[str, Any]]:
    """Yield the rows of ``sheet_name`` as dictionaries keyed by header.

    Fully empty rows are skipped. A missing sheet yields nothing.
    """

    if sheet_name not in workbook.sheetnames:
        log.warning("Workbook has no '%s' sheet; skipping", sheet_name)
        return
    rows = workbook[sheet_name].iter_rows(values_only=True)
    header = next(rows, None)
    if header is None:
        return
    names = [str(name).strip() if name is not None else "" for name in header]
    for raw in rows:
        if any(cell is not None for cell in raw):
            yield {name: value for name, value in zip(names, raw) if name}


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _flag(value: Any, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def _money(value: Any, column: str, *, required: bool = True) -> Optional[Decimal]:
    if value is None or value == "":
        if required:
            raise ValueError(f"Missing value for column '{column}'")
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid number in column '{column}': {value!r}") from exc


def _rate_or_default(value: Any, column: str) -> Decimal:
    rate = _money(value, column, required=False)
    return rate if rate is not None else DEFAULT_GST_RATE


def _require(row: Mapping[str, Any], column: str) -> str:
    value = _text(row.get(column))
    if not value:
        raise ValueError(f"Missing value for column '{column}'")
    return value


def parse_branch_row(row: Mapping[str, Any]) -> BranchRecord:
    return BranchRecord(
        branch_id=ObjectId(),
        code=_require(row, "Code").upper(),
        name=_require(row, "Name"),
        city=_text(row.get("City")),
        state=_text(row.get("State")),
        phone=_text(row.get("Phone")),
        email=_text(row.get("Email")),
        is_primary=_flag(row.get("IsPrimary"), False),
        is_active=_flag(row.get("IsActive"), True),
        tax_rate=_rate_or_default(row.get("TaxRate"), "TaxRate"),
        currency=_text(row.get("Currency")) or "INR",
    )


def parse_category_row(row: Mapping[str, Any]) -> CategoryRecord:
    return CategoryRecord(
        category_id=ObjectId(),
        code=_require(row, "Code").upper(),
        name=_require(row, "Name"),
        gst_rate=_money(row.get("GstRate"), "GstRate", required=False),
    )


def parse_product_row(row: Mapping[str, Any], category_ids: Mapping[str, ObjectId]) -> ProductRecord:
    """Build a product from a worksheet row.

    Raises:
        MissingReferenceError: If the row names an unknown category code.
        ValueError: If a required column is empty or not numeric.
    """

    sku = _require(row, "SKU")
    category_code = _require(row, "CategoryCode").upper()
    if category_code not in category_ids:
        raise MissingReferenceError(f"Product '{sku}' references unknown category '{category_code}'")
    return ProductRecord(
        product_id=ObjectId(),
        sku=sku,
        name=_require(row, "Name"),
        category_id=category_ids[category_code],
        cost_price=_money(row.get("CostPrice"), "CostPrice"),
        selling_price=_money(row.get("SellingPrice"), "SellingPrice"),
        mrp=_money(row.get("MRP"), "MRP", required=False),
        gst_rate=_rate_or_default(row.get("GstRate"), "GstRate"),
        is_active=_flag(row.get("IsActive"), True),
    )


def parse_user_row(row: Mapping[str, Any], branch_ids: Mapping[str, ObjectId]) -> UserRecord:
    """Build a staff user from a worksheet row.

    A blank ``BranchCode`` leaves the user unassigned.

    Raises:
        MissingReferenceError: If the row names an unknown branch code.
    """

    email = _require(row, "Email").lower()
    branch_code = _text(row.get("BranchCode")).upper()
    if branch_code and branch_code not in branch_ids:
        raise MissingReferenceError(f"User '{email}' references unknown branch '{branch_code}'")
    return UserRecord(
        user_id=ObjectId(),
        email=email,
        full_name=_require(row, "FullName"),
        role=_require(row, "Role"),
        branch_id=branch_ids.get(branch_code) if branch_code else None,
        is_active=_flag(row.get("IsActive"), True),
    )

