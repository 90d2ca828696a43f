"""Unit tests for the master-data workbook template and row parsing."""

from __future__ import annotations

from decimal import Decimal

import openpyxl
import pytest
from bson import ObjectId

from supermart import master_data
from supermart.errors import MissingReferenceError


def test_create_master_workbook_writes_bold_headers(tmp_path):
    path = master_data.create_master_workbook(tmp_path / "nested" / "master.xlsx")

    workbook = openpyxl.load_workbook(path)
    assert workbook.sheetnames == list(master_data.SHEET_COLUMNS)
    for sheet_name, columns in master_data.SHEET_COLUMNS.items():
        header = workbook[sheet_name][1]
        assert [cell.value for cell in header] == list(columns)
        assert all(cell.font.bold for cell in header)


def test_create_master_workbook_prefills_system_user(tmp_path):
    path = master_data.create_master_workbook(tmp_path / "master.xlsx", system_user_email="root@test.local")

    rows = list(master_data.iter_sheet_rows(master_data.open_master_workbook(path), master_data.USERS_SHEET))
    assert rows == [
        {
            "Email": "root@test.local",
            "FullName": master_data.SYSTEM_USER_NAME,
            "Role": master_data.SYSTEM_USER_ROLE,
            "BranchCode": None,
            "IsActive": True,
        }
    ]


def test_create_master_workbook_refuses_to_overwrite(tmp_path):
    path = tmp_path / "master.xlsx"
    master_data.create_master_workbook(path)

    with pytest.raises(FileExistsError):
        master_data.create_master_workbook(path)
    assert master_data.create_master_workbook(path, overwrite=True) == path.resolve()


def test_open_master_workbook_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        master_data.open_master_workbook(tmp_path / "missing.xlsx")


def test_iter_sheet_rows_skips_blank_rows_and_missing_sheets(tmp_path):
    path = master_data.create_master_workbook(tmp_path / "master.xlsx")
    workbook = openpyxl.load_workbook(path)
    sheet = workbook[master_data.CATEGORIES_SHEET]
    sheet.append(["GROC", "Groceries", 5])
    sheet.append([None, None, None])
    sheet.append(["ELEC", "Electronics", None])
    del workbook[master_data.BRANCHES_SHEET]
    workbook.save(path)

    reloaded = master_data.open_master_workbook(path)
    rows = list(master_data.iter_sheet_rows(reloaded, master_data.CATEGORIES_SHEET))
    assert [row["Code"] for row in rows] == ["GROC", "ELEC"]
    assert list(master_data.iter_sheet_rows(reloaded, master_data.BRANCHES_SHEET)) == []


# ---------------------------------------------------------------------------
# Row parsing
# ---------------------------------------------------------------------------


def test_parse_branch_row_applies_defaults():
    branch = master_data.parse_branch_row({"Code": " mum ", "Name": "Mumbai Central", "IsPrimary": "yes"})

    assert branch.code == "MUM"
    assert branch.is_primary is True
    assert branch.is_active is True
    assert branch.tax_rate == Decimal("18")
    assert branch.currency == "INR"


def test_parse_category_row_keeps_zero_rate():
    category = master_data.parse_category_row({"Code": "fresh", "Name": "Fresh Produce", "GstRate": 0})
    assert category.code == "FRESH"
    assert category.gst_rate == Decimal("0")
    assert master_data.parse_category_row({"Code": "X", "Name": "Misc"}).gst_rate is None


def test_parse_product_row_resolves_category():
    category_id = ObjectId()
    product = master_data.parse_product_row(
        {
            "SKU": "GROC-001",
            "Name": "Basmati Rice 5kg",
            "CategoryCode": "groc",
            "CostPrice": 410,
            "SellingPrice": "525.50",
            "GstRate": 0,
            "IsActive": "no",
        },
        {"GROC": category_id},
    )

    assert product.category_id == category_id
    assert product.cost_price == Decimal("410")
    assert product.selling_price == Decimal("525.50")
    assert product.gst_rate == Decimal("0")
    assert product.mrp is None
    assert product.is_active is False
    assert product.stock_by_branch == ()


def test_parse_product_row_defaults_gst_rate():
    product = master_data.parse_product_row(
        {"SKU": "S", "Name": "N", "CategoryCode": "GROC", "CostPrice": 1, "SellingPrice": 2},
        {"GROC": ObjectId()},
    )
    assert product.gst_rate == master_data.DEFAULT_GST_RATE


def test_parse_product_row_unknown_category():
    with pytest.raises(MissingReferenceError):
        master_data.parse_product_row(
            {"SKU": "S", "Name": "N", "CategoryCode": "NOPE", "CostPrice": 1, "SellingPrice": 2},
            {},
        )


@pytest.mark.parametrize(
    "row",
    [
        {"Name": "N", "CategoryCode": "GROC", "CostPrice": 1, "SellingPrice": 2},
        {"SKU": "S", "Name": "N", "CategoryCode": "GROC", "SellingPrice": 2},
        {"SKU": "S", "Name": "N", "CategoryCode": "GROC", "CostPrice": "ten", "SellingPrice": 2},
    ],
)
def test_parse_product_row_rejects_incomplete_rows(row):
    with pytest.raises(ValueError):
        master_data.parse_product_row(row, {"GROC": ObjectId()})


def test_parse_user_row_resolves_branch():
    branch_id = ObjectId()
    user = master_data.parse_user_row(
        {"Email": "Cashier@Store.In", "FullName": "Ravi Kumar", "Role": "Cashier", "BranchCode": "mum"},
        {"MUM": branch_id},
    )
    assert user.email == "cashier@store.in"
    assert user.branch_id == branch_id


def test_parse_user_row_without_branch():
    user = master_data.parse_user_row({"Email": "a@b.c", "FullName": "A", "Role": "Admin"}, {})
    assert user.branch_id is None


def test_parse_user_row_unknown_branch():
    with pytest.raises(MissingReferenceError):
        master_data.parse_user_row(
            {"Email": "a@b.c", "FullName": "A", "Role": "Cashier", "BranchCode": "XYZ"},
            {"MUM": ObjectId()},
        )
