"""Tests for statement parsing and reconciliation."""

import io
import itertools
import math
from datetime import datetime

import pandas as pd
import pytest

from portfolio_pulse.errors import FormatNotRecognized
from portfolio_pulse.importer.detect import SheetFormat, find_header
from portfolio_pulse.importer.parser import ImportRow, parse, parse_date
from portfolio_pulse.importer.reconcile import fold
from portfolio_pulse.storage.models import AssetType

STOCK_CSV = b"""Client Code,ABC123,,,
Order History,01-03-2025 to 31-03-2025,,,
,,,,
Stock name,Symbol,ISIN,Type,Quantity,Value,Exchange,Exchange Order Id,Execution date and time,Order status
Reliance Industries,RELIANCE,INE002A01018,BUY,10,20000,BSE,1001,18-03-2025 11:43 AM,Executed
Reliance Industries,RELIANCE.BO,INE002A01018,BUY,10,22000,NSE,1002,19-Mar-2025 10:00:00,Executed
Tata Consultancy Services,TCS,INE467B01029,BUY,5,17500,NSE,1003,20-03-2025 09:30 AM,Executed
Tata Consultancy Services,TCS,INE467B01029,SELL,5,18000,NSE,1004,21-03-2025 09:30 AM,Executed
Infosys,INFY,INE009A01021,BUY,3,4500,NSE,1005,21-03-2025 10:00 AM,Rejected
"""

# Fund statements list the newest transaction first
MF_CSV = b"""Scheme Name,Transaction Type,Units,NAV,Amount,Date
Axis Bluechip Fund Direct Growth (120465),REDEEM,5.000,55.00,275.00,11 Aug 2025
Axis Bluechip Fund Direct Growth (120465),PURCHASE,10.000,52.00,520.00,10 Jul 2025
Axis Bluechip Fund Direct Growth (120465),SIP PURCHASE,10.000,50.00,500.00,10 Jun 2025
Parag Parikh Flexi Cap Fund,PURCHASE,"1,000.500",70.00,"70,035.00",05 May 2025
"""


def buy(symbol, quantity, price, asset_type=AssetType.STOCK, date="2025-01-01"):
    return ImportRow(
        name=symbol,
        symbol=symbol,
        transaction_type="BUY",
        quantity=quantity,
        price=price,
        date=date,
        asset_type=asset_type,
    )


def sell(symbol, quantity, price=1.0, asset_type=AssetType.STOCK):
    return ImportRow(
        name=symbol,
        symbol=symbol,
        transaction_type="SELL",
        quantity=quantity,
        price=price,
        date=None,
        asset_type=asset_type,
    )


class TestParseDate:
    def test_layouts(self):
        assert parse_date("18-03-2025 11:43 AM") == "2025-03-18"
        assert parse_date("05-Jan-2024") == "2024-01-05"
        assert parse_date("11 Aug 2025") == "2025-08-11"
        assert parse_date("2025-08-11") == "2025-08-11"

    def test_spreadsheet_cells(self):
        assert parse_date(datetime(2025, 8, 11, 14, 5)) == "2025-08-11"
        assert parse_date(pd.Timestamp("2025-08-11")) == "2025-08-11"

    def test_unreadable(self):
        assert parse_date("31-02-2025") is None
        assert parse_date("yesterday") is None
        assert parse_date("") is None
        assert parse_date(None) is None


class TestDetection:
    def test_header_after_banner_rows(self):
        rows = [["Statement"], [], ["Scheme Name", "Units", "NAV"], ["X", "1", "2"]]
        index, spec = find_header(rows)
        assert index == 2
        assert spec.format == SheetFormat.MUTUAL_FUND

    def test_generic_needs_whole_cells(self):
        assert find_header([["symbol quantity report"]]) is None
        index, spec = find_header([["Symbol", "Name", "Quantity"]])
        assert spec.format == SheetFormat.GENERIC

    def test_header_beyond_scan_window(self):
        rows = [["banner"]] * 20 + [["Stock name", "Symbol"]]
        assert find_header(rows) is None


class TestStockStatement:
    def test_parse(self):
        sheet = parse(STOCK_CSV, "csv")
        assert sheet.format == SheetFormat.STOCK
        assert sheet.header_row == 3
        assert len(sheet.rows) == 5

        first = sheet.rows[0]
        assert first.symbol == "RELIANCE.NS"
        assert first.transaction_type == "BUY"
        assert first.price == 2000.0
        assert first.date == "2025-03-18"
        assert first.status == "executed"
        assert sheet.rows[1].symbol == "RELIANCE.NS"
        assert sheet.rows[1].date == "2025-03-19"

    def test_fold(self):
        sheet = parse(STOCK_CSV, "csv")
        result = fold(set(), sheet.rows, sheet.format)

        assert [h.symbol for h in result.new_holdings] == ["RELIANCE.NS"]
        reliance = result.new_holdings[0]
        assert reliance.quantity == 20
        assert reliance.average_cost == 2100.0
        assert reliance.purchase_date == "2025-03-18"
        assert reliance.exchange == "NSE"
        assert result.sold_out == ["TCS.NS"]
        assert result.skipped == 1  # rejected order


class TestMutualFundStatement:
    def test_parse(self):
        sheet = parse(MF_CSV, "csv")
        assert sheet.format == SheetFormat.MUTUAL_FUND

        axis = sheet.rows[0]
        assert axis.symbol == "120465"
        assert axis.name == "Axis Bluechip Fund Direct Growth"
        assert axis.transaction_type == "SELL"
        assert axis.code_pending is False

        parag = sheet.rows[3]
        assert parag.symbol == "Parag Parikh Flexi Cap Fund"
        assert parag.code_pending is True
        assert parag.quantity == 1000.5
        assert parag.date == "2025-05-05"

    def test_fold_bottom_to_top(self):
        sheet = parse(MF_CSV, "csv")
        result = fold(set(), sheet.rows, sheet.format)
        by_symbol = {h.symbol: h for h in result.new_holdings}

        axis = by_symbol["120465"]
        assert axis.quantity == 15
        assert axis.average_cost == 51.0
        assert axis.purchase_date == "2025-06-10"
        assert result.latest_price["120465"] == 52.0

        assert by_symbol["Parag Parikh Flexi Cap Fund"].code_pending is True
        assert result.unmatched_sells == []

    def test_nav_from_amount(self):
        data = b"Scheme Name,Transaction Type,Units,NAV,Amount,Date\nFund A (1),PURCHASE,10,,500,01 Jan 2025\n"
        sheet = parse(data, "csv")
        assert sheet.rows[0].price == 50.0


class TestGenericStatement:
    def test_asset_types(self):
        data = (
            b"Asset Type,Symbol,Name,Quantity,Purchase Price,Purchase Date,Sector,Exchange\n"
            b"stock,INFY,Infosys,3,1500,2025-01-02,IT,NSE\n"
            b"Mutual Fund,120465,Axis Bluechip,10,50,2025-01-03,,\n"
            b",HDFCMID,HDFC Mid-Cap Fund,4,100,2025-01-04,,\n"
            b"crypto,BTC,Bitcoin,1,100,2025-01-05,,\n"
            b",,No symbol,1,1,,,\n"
        )
        sheet = parse(data, "csv")
        assert sheet.format == SheetFormat.GENERIC
        assert [r.asset_type for r in sheet.rows] == [
            AssetType.STOCK,
            AssetType.MUTUAL_FUND,
            AssetType.MUTUAL_FUND,
        ]
        assert sheet.rows[0].symbol == "INFY.NS"
        assert sheet.rows[0].sector == "IT"
        assert sheet.rows[1].code_pending is False
        assert sheet.rows[2].code_pending is True
        assert sheet.skipped == 2


class TestExcel:
    def test_xlsx_with_banner(self):
        frame = pd.DataFrame(
            [
                ["Holdings statement", None, None, None, None, None],
                ["Scheme Name", "Transaction Type", "Units", "NAV", "Amount", "Date"],
                ["Axis Bluechip Fund (120465)", "PURCHASE", 10.0, 50.0, 500.0, datetime(2025, 6, 10)],
            ]
        )
        buffer = io.BytesIO()
        frame.to_excel(buffer, header=False, index=False, engine="openpyxl")

        sheet = parse(buffer.getvalue(), "xlsx")
        assert sheet.format == SheetFormat.MUTUAL_FUND
        assert sheet.header_row == 1
        row = sheet.rows[0]
        assert row.symbol == "120465"
        assert row.quantity == 10.0
        assert row.date == "2025-06-10"

    def test_corrupt_workbook(self):
        with pytest.raises(FormatNotRecognized):
            parse(b"not a zip file", "xlsx")


class TestUnrecognized:
    def test_no_header(self):
        with pytest.raises(FormatNotRecognized):
            parse(b"foo,bar\n1,2\n", "csv")

    def test_unsupported_extension(self):
        with pytest.raises(FormatNotRecognized):
            parse(b"%PDF-1.4", "pdf")


class TestFold:
    def test_weighted_average(self):
        rows = [buy("RELIANCE.NS", 10, 2000), buy("RELIANCE.NS", 10, 2200)]
        result = fold(set(), rows, SheetFormat.STOCK)
        holding = result.new_holdings[0]
        assert holding.quantity == 20
        assert holding.average_cost == 2100

    def test_liquidated_absent(self):
        rows = [buy("TCS.NS", 5, 3500), sell("TCS.NS", 5)]
        result = fold(set(), rows, SheetFormat.STOCK)
        assert result.new_holdings == []
        assert result.sold_out == ["TCS.NS"]

    def test_partial_sell_keeps_cost(self):
        rows = [buy("INFY.NS", 10, 1500), sell("INFY.NS", 4)]
        holding = fold(set(), rows, SheetFormat.STOCK).new_holdings[0]
        assert holding.quantity == 6
        assert holding.average_cost == 1500

    def test_fund_dust_is_liquidated(self):
        # Newest first: the redemption leaves 0.005 units
        rows = [
            sell("120465", 9.995, asset_type=AssetType.MUTUAL_FUND),
            buy("120465", 10, 50, asset_type=AssetType.MUTUAL_FUND),
        ]
        result = fold(set(), rows, SheetFormat.MUTUAL_FUND)
        assert result.new_holdings == []
        assert result.sold_out == ["120465"]

    def test_stock_dust_is_kept(self):
        rows = [buy("X.NS", 10, 1), sell("X.NS", 9.995)]
        result = fold(set(), rows, SheetFormat.STOCK)
        assert len(result.new_holdings) == 1

    def test_duplicates_not_reinserted(self):
        rows = [buy("RELIANCE.NS", 10, 2000), buy("TCS.NS", 1, 3500)]
        result = fold({"RELIANCE.NS"}, rows, SheetFormat.STOCK)
        assert [h.symbol for h in result.new_holdings] == ["TCS.NS"]
        assert result.duplicates == ["RELIANCE.NS"]

    def test_nan_and_non_positive_skipped(self):
        rows = [buy("A.NS", math.nan, 10), buy("B.NS", 1, 0), buy("C.NS", -1, 10), buy("D.NS", 1, 10)]
        result = fold(set(), rows, SheetFormat.GENERIC)
        assert [h.symbol for h in result.new_holdings] == ["D.NS"]
        assert result.skipped == 3

    def test_unmatched_sell_reported(self):
        result = fold(set(), [sell("WIPRO.NS", 5)], SheetFormat.STOCK)
        assert result.new_holdings == []
        assert result.unmatched_sells == ["WIPRO.NS"]

    def test_rebuy_after_sell_out(self):
        rows = [buy("X.NS", 5, 100), sell("X.NS", 5), buy("X.NS", 2, 120, date="2025-02-01")]
        result = fold(set(), rows, SheetFormat.STOCK)
        holding = result.new_holdings[0]
        assert holding.quantity == 2
        assert holding.average_cost == 120
        assert holding.purchase_date == "2025-02-01"
        assert result.sold_out == []

    def test_missing_date_uses_today(self):
        row = buy("X.NS", 1, 1, date=None)
        holding = fold(set(), [row], SheetFormat.STOCK, today="2025-10-19").new_holdings[0]
        assert holding.purchase_date == "2025-10-19"

    def test_average_independent_of_buy_order(self):
        lots = [(10, 2000), (5, 2300), (7, 1900)]
        expected = sum(q * p for q, p in lots) / sum(q for q, _ in lots)
        for order in itertools.permutations(lots):
            rows = [buy("RELIANCE.NS", q, p) for q, p in order]
            holding = fold(set(), rows, SheetFormat.STOCK).new_holdings[0]
            assert holding.quantity == 22
            assert holding.average_cost == pytest.approx(expected)

    def test_stored_symbol_sold_out_in_batch(self):
        rows = [buy("TCS.NS", 5, 3500), sell("TCS.NS", 5)]
        result = fold({"TCS.NS"}, rows, SheetFormat.STOCK)
        assert result.sold_out == ["TCS.NS"]
        assert result.duplicates == []
        assert result.new_holdings == []

    def test_stored_symbol_still_folds_buys(self):
        rows = [buy("TCS.NS", 5, 3500), buy("TCS.NS", 5, 3700), buy("INFY.NS", 1, 1500)]
        result = fold({"TCS.NS"}, rows, SheetFormat.STOCK)
        assert result.duplicates == ["TCS.NS"]
        assert [h.symbol for h in result.new_holdings] == ["INFY.NS"]

    def test_only_executed_orders_count(self):
        rows = [
            ImportRow(
                name="Infosys",
                symbol="INFY.NS",
                transaction_type="BUY",
                quantity=1,
                price=1500,
                date="2025-01-01",
                asset_type=AssetType.STOCK,
                status=status,
            )
            for status in ("not executed", "unexecuted", "executed", "")
        ]
        result = fold(set(), rows, SheetFormat.STOCK)
        assert result.skipped == 3
        assert result.new_holdings[0].quantity == 1
