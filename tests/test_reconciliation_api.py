"""
Tests for the payment reconciliation endpoints.

The payslips fixture expects three payments for the March cycle:
UTR1 1000.00, UTR2 2000.00 and an un-referenced 1500.00 for Ada Obi.
"""

import csv
import io
import uuid
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from hrms.models import Reconciliation, ReconciliationItem, ReconciliationItemStatus

BASE = "/api/v1/reconciliation"


def mixed_bank_data():
    """One line per outcome: matched, mismatch, fuzzy match, duplicate, unknown."""
    return [
        {"lineNo": 1, "reference": "UTR1", "amount": "1000.00", "valueDate": "2026-03-28"},
        {"lineNo": 2, "reference": "UTR2", "amount": "2050.00", "valueDate": "2026-03-28"},
        {"lineNo": 3, "amount": "1500.00", "valueDate": "2026-03-28", "payee": "Ada Obi"},
        {"lineNo": 4, "reference": "UTR1", "amount": "1000.00", "valueDate": "2026-03-29"},
        {"lineNo": 5, "reference": "UTR9", "amount": "75.00", "valueDate": "2026-03-30"},
    ]


def clean_bank_data():
    return [
        {"lineNo": 1, "reference": "UTR1", "amount": "1000.00", "valueDate": "2026-03-28"},
        {"lineNo": 2, "reference": "UTR2", "amount": "2000.00", "valueDate": "2026-03-28"},
        {"lineNo": 3, "amount": "1500.00", "valueDate": "2026-03-28", "payee": "Ada Obi"},
    ]


async def run(client, headers, cycle_id, bank_data, **extra):
    body = {
        "payrollCycleId": str(cycle_id),
        "bankData": bank_data,
        "reconciliationDate": "2026-03-31",
        **extra,
    }
    return await client.post(BASE, json=body, headers=headers)


class TestCreateReconciliation:

    @pytest.mark.asyncio
    async def test_mixed_run(self, client: AsyncClient, finance_user, payroll_cycle, payslips, auth_headers):
        response = await run(client, auth_headers(finance_user), payroll_cycle.id, mixed_bank_data())

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Reconciliation completed"

        data = body["data"]
        assert data["status"] == "in_progress"
        assert data["total_bank_records"] == 5
        assert data["total_erp_records"] == 3
        assert data["matched_records"] == 2
        assert data["amount_mismatches"] == 1
        assert data["missing_in_bank"] == 0
        assert data["missing_in_erp"] == 1
        assert data["duplicate_records"] == 1
        assert data["resolved_records"] == 0
        assert Decimal(data["total_discrepancy_amount"]) == Decimal("1125.00")
        assert data["completed_at"] is None
        assert data["performed_by_id"] == str(finance_user.id)

        items = data["items"]
        assert [item["sequence"] for item in items] == [1, 2, 3, 4, 5]
        by_line = {item["bank_line_no"]: item for item in items}
        assert by_line[1]["status"] == "matched"
        assert by_line[2]["status"] == "amount_mismatch"
        assert Decimal(by_line[2]["variance_amount"]) == Decimal("50.00")
        assert by_line[3]["status"] == "matched"
        assert by_line[3]["low_confidence"] is True
        assert by_line[3]["payee"] == "Ada Obi"
        assert by_line[4]["status"] == "duplicate"
        assert by_line[5]["status"] == "missing_in_erp"
        assert by_line[5]["payslip_id"] is None

    @pytest.mark.asyncio
    async def test_clean_run_completes_immediately(
        self, client: AsyncClient, admin_user, payroll_cycle, payslips, auth_headers
    ):
        response = await run(client, auth_headers(admin_user), payroll_cycle.id, clean_bank_data())

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["status"] == "completed"
        assert data["matched_records"] == 3
        assert data["completed_at"] is not None
        assert Decimal(data["total_discrepancy_amount"]) == Decimal("0")

    @pytest.mark.asyncio
    async def test_draft_payslips_are_not_expected(
        self, client: AsyncClient, finance_user, payroll_cycle, payslips, auth_headers
    ):
        response = await run(client, auth_headers(finance_user), payroll_cycle.id, [])

        data = response.json()["data"]
        assert data["total_erp_records"] == 3
        assert data["missing_in_bank"] == 3
        assert Decimal(data["total_discrepancy_amount"]) == Decimal("4500.00")

    @pytest.mark.asyncio
    async def test_explicit_erp_data_replaces_payslips(
        self, client: AsyncClient, finance_user, payroll_cycle, payslips, auth_headers
    ):
        response = await run(
            client,
            auth_headers(finance_user),
            payroll_cycle.id,
            [{"lineNo": 1, "reference": "x1", "amount": "10.00", "valueDate": "2026-03-28"}],
            erpData=[{"utr": "X1", "amount": "10", "payslipId": str(payslips[0].id)}],
        )

        assert response.status_code == 201
        data = response.json()["data"]
        assert data["total_erp_records"] == 1
        assert data["matched_records"] == 1
        assert data["status"] == "completed"

    @pytest.mark.asyncio
    async def test_malformed_ledger_records_failed_run(
        self, client: AsyncClient, db_session, finance_user, payroll_cycle, payslips, auth_headers
    ):
        headers = auth_headers(finance_user)
        bank_data = [{"lineNo": 1, "reference": "UTR1", "amount": "-1000.00", "valueDate": "2026-03-28"}]

        response = await run(client, headers, payroll_cycle.id, bank_data)

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "RECONCILIATION_FAILED"
        assert "must not be negative" in error["message"]

        record_id = error["details"]["reconciliation_id"]
        detail = await client.get(f"{BASE}/{record_id}", headers=headers)
        assert detail.status_code == 200
        data = detail.json()["data"]
        assert data["status"] == "failed"
        assert "must not be negative" in data["failure_reason"]
        assert data["items"] == []

        # No partial items or extra records
        count = await db_session.scalar(select(func.count()).select_from(Reconciliation))
        assert count == 1

    @pytest.mark.asyncio
    async def test_erp_data_must_reference_the_cycle(
        self, client: AsyncClient, db_session, finance_user, payroll_cycle, payslips, auth_headers
    ):
        response = await run(
            client,
            auth_headers(finance_user),
            payroll_cycle.id,
            [{"lineNo": 1, "reference": "X1", "amount": "10.00", "valueDate": "2026-03-28"}],
            erpData=[
                {"utr": "X1", "amount": "10.00", "payslipId": str(payslips[0].id)},
                {"utr": "X2", "amount": "20.00", "payslipId": str(uuid.uuid4())},
                {"utr": "X3", "amount": "30.00", "employeeId": str(uuid.uuid4())},
            ],
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert [detail["field"] for detail in error["details"]] == [
            "erpData.1.payslipId",
            "erpData.2.employeeId",
        ]

        count = await db_session.scalar(select(func.count()).select_from(Reconciliation))
        assert count == 0

    @pytest.mark.asyncio
    async def test_erp_payslip_of_another_employee_is_rejected(
        self, client: AsyncClient, finance_user, payroll_cycle, payslips, auth_headers
    ):
        response = await run(
            client,
            auth_headers(finance_user),
            payroll_cycle.id,
            [],
            erpData=[{
                "amount": "10.00",
                "payslipId": str(payslips[0].id),
                "employeeId": str(payslips[1].employee_id),
            }],
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"][0]["message"] == (
            f"Payslip {payslips[0].id} belongs to another employee"
        )

    @pytest.mark.asyncio
    async def test_sub_cent_amount_records_failed_run(
        self, client: AsyncClient, db_session, finance_user, payroll_cycle, payslips, auth_headers
    ):
        bank_data = [{"lineNo": 1, "reference": "UTR1", "amount": "999.995", "valueDate": "2026-03-28"}]

        response = await run(client, auth_headers(finance_user), payroll_cycle.id, bank_data)

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "RECONCILIATION_FAILED"
        assert "more than two decimal places" in error["message"]

        record = await db_session.get(Reconciliation, uuid.UUID(error["details"]["reconciliation_id"]))
        assert record.status.value == "failed"
        assert record.matched_records == 0

    @pytest.mark.asyncio
    async def test_out_of_range_amount_records_failed_run(
        self, client: AsyncClient, db_session, finance_user, payroll_cycle, payslips, auth_headers
    ):
        bank_data = [{"lineNo": 1, "reference": "UTR1", "amount": "1e27", "valueDate": "2026-03-28"}]

        response = await run(client, auth_headers(finance_user), payroll_cycle.id, bank_data)

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "RECONCILIATION_FAILED"
        assert "out of range" in error["message"]

        count = await db_session.scalar(select(func.count()).select_from(Reconciliation))
        assert count == 1

    @pytest.mark.asyncio
    async def test_repeated_line_number_fails(
        self, client: AsyncClient, finance_user, payroll_cycle, payslips, auth_headers
    ):
        bank_data = [
            {"lineNo": 1, "reference": "UTR1", "amount": "1000.00", "valueDate": "2026-03-28"},
            {"lineNo": 1, "reference": "UTR2", "amount": "2000.00", "valueDate": "2026-03-28"},
        ]

        response = await run(client, auth_headers(finance_user), payroll_cycle.id, bank_data)

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_cycle(self, client: AsyncClient, finance_user, auth_headers):
        response = await run(client, auth_headers(finance_user), uuid.uuid4(), [])

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "RECORD_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_missing_value_date_is_a_validation_error(
        self, client: AsyncClient, finance_user, payroll_cycle, auth_headers
    ):
        response = await run(
            client, auth_headers(finance_user), payroll_cycle.id, [{"reference": "UTR1", "amount": "1.00"}],
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"]["code"] == "VALIDATION_ERROR"
        assert any("valueDate" in detail["field"] for detail in body["error"]["details"])


class TestAccessControl:

    @pytest.mark.asyncio
    async def test_hr_cannot_reconcile(self, client: AsyncClient, hr_user, payroll_cycle, auth_headers):
        response = await run(client, auth_headers(hr_user), payroll_cycle.id, [])

        assert response.status_code == 403
        assert response.json()["error"]["message"] == "Insufficient permissions"

    @pytest.mark.asyncio
    async def test_anonymous_is_rejected(self, client: AsyncClient, payroll_cycle):
        response = await run(client, {}, payroll_cycle.id, [])
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_other_company_cannot_use_cycle(
        self, client: AsyncClient, other_admin, payroll_cycle, payslips, auth_headers
    ):
        response = await run(client, auth_headers(other_admin), payroll_cycle.id, clean_bank_data())

        assert response.status_code == 403
        assert response.json()["error"]["message"] == "Access denied to this company"

    @pytest.mark.asyncio
    async def test_other_company_cannot_read_or_resolve(
        self, client: AsyncClient, finance_user, other_admin, payroll_cycle, payslips, auth_headers
    ):
        created = await run(client, auth_headers(finance_user), payroll_cycle.id, mixed_bank_data())
        data = created.json()["data"]
        open_item = next(item for item in data["items"] if item["status"] != "matched")
        outsider = auth_headers(other_admin)

        assert (await client.get(f"{BASE}/{data['id']}", headers=outsider)).status_code == 403
        assert (await client.get(f"{BASE}/{data['id']}/export", headers=outsider)).status_code == 403
        resolve = await client.post(
            f"{BASE}/items/{open_item['id']}/resolve",
            json={"resolution": "accept_bank_amount"},
            headers=outsider,
        )
        assert resolve.status_code == 403

        listing = await client.get(BASE, headers=outsider)
        assert listing.json()["meta"]["total"] == 0

    @pytest.mark.asyncio
    async def test_super_admin_reaches_any_company(
        self, client: AsyncClient, finance_user, super_admin, company, payroll_cycle, payslips, auth_headers
    ):
        created = await run(client, auth_headers(finance_user), payroll_cycle.id, clean_bank_data())
        record_id = created.json()["data"]["id"]

        detail = await client.get(f"{BASE}/{record_id}", headers=auth_headers(super_admin))
        assert detail.status_code == 200

        listing = await client.get(
            BASE, params={"company_id": str(company.id)}, headers=auth_headers(super_admin),
        )
        assert listing.json()["meta"]["total"] == 1


class TestResolution:

    @pytest.mark.asyncio
    async def test_resolve_lifecycle(
        self, client: AsyncClient, finance_user, payroll_cycle, payslips, auth_headers
    ):
        headers = auth_headers(finance_user)
        created = (await run(client, headers, payroll_cycle.id, mixed_bank_data())).json()["data"]
        open_items = [item for item in created["items"] if item["status"] != "matched"]
        assert len(open_items) == 3

        first = open_items[0]
        response = await client.post(
            f"{BASE}/items/{first['id']}/resolve",
            json={"resolution": "manual_adjustment_required", "remarks": "Raised with bank"},
            headers=headers,
        )

        assert response.status_code == 200
        item = response.json()["data"]
        assert item["status"] == "resolved"
        assert item["classification"] == first["classification"]
        assert item["resolution_code"] == "manual_adjustment_required"
        assert item["remarks"] == "Raised with bank"
        assert item["resolved_by_id"] == str(finance_user.id)
        assert item["resolved_at"] is not None

        record = (await client.get(f"{BASE}/{created['id']}", headers=headers)).json()["data"]
        assert record["status"] == "in_progress"
        assert record["resolved_records"] == 1

        for remaining in open_items[1:]:
            response = await client.post(
                f"{BASE}/items/{remaining['id']}/resolve",
                json={"resolution": "accept_erp_amount"},
                headers=headers,
            )
            assert response.status_code == 200

        record = (await client.get(f"{BASE}/{created['id']}", headers=headers)).json()["data"]
        assert record["status"] == "completed"
        assert record["resolved_records"] == 3
        assert record["completed_at"] is not None
        # Classification counters are history and never move
        assert record["amount_mismatches"] == 1
        assert record["duplicate_records"] == 1

    @pytest.mark.asyncio
    async def test_resolving_bank_only_items_completes_record(
        self, client: AsyncClient, finance_user, payroll_cycle, payslips, auth_headers
    ):
        headers = auth_headers(finance_user)
        bank_data = [
            {"lineNo": 1, "reference": "UTR7", "amount": "50.00", "valueDate": "2026-03-28"},
            {"lineNo": 2, "reference": "UTR7", "amount": "50.00", "valueDate": "2026-03-29"},
        ]
        created = (await run(client, headers, payroll_cycle.id, bank_data, erpData=[])).json()["data"]

        assert [item["status"] for item in created["items"]] == ["missing_in_erp", "duplicate"]
        assert all(item["payslip_id"] is None for item in created["items"])

        for item, resolution in zip(created["items"], ["accept_bank_amount", "duplicate_reversed"]):
            response = await client.post(
                f"{BASE}/items/{item['id']}/resolve",
                json={"resolution": resolution},
                headers=headers,
            )
            assert response.status_code == 200

        record = (await client.get(f"{BASE}/{created['id']}", headers=headers)).json()["data"]
        assert record["status"] == "completed"
        assert record["resolved_records"] == 2
        assert record["completed_at"] is not None

    @pytest.mark.asyncio
    async def test_resolved_item_cannot_be_resolved_again(
        self, client: AsyncClient, finance_user, payroll_cycle, payslips, auth_headers
    ):
        headers = auth_headers(finance_user)
        created = (await run(client, headers, payroll_cycle.id, mixed_bank_data())).json()["data"]
        item = next(item for item in created["items"] if item["status"] == "duplicate")
        url = f"{BASE}/items/{item['id']}/resolve"

        first = await client.post(url, json={"resolution": "duplicate_reversed"}, headers=headers)
        second = await client.post(url, json={"resolution": "accept_bank_amount"}, headers=headers)

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["error"]["code"] == "INVALID_STATE"
        assert second.json()["error"]["message"] == "Item is already resolved"

        record = (await client.get(f"{BASE}/{created['id']}", headers=headers)).json()["data"]
        assert record["resolved_records"] == 1
        stored = next(i for i in record["items"] if i["id"] == item["id"])
        assert stored["resolution_code"] == "duplicate_reversed"

    @pytest.mark.asyncio
    async def test_matched_item_cannot_be_resolved(
        self, client: AsyncClient, finance_user, payroll_cycle, payslips, auth_headers
    ):
        headers = auth_headers(finance_user)
        created = (await run(client, headers, payroll_cycle.id, mixed_bank_data())).json()["data"]
        matched = next(item for item in created["items"] if item["status"] == "matched")

        response = await client.post(
            f"{BASE}/items/{matched['id']}/resolve",
            json={"resolution": "accept_bank_amount"},
            headers=headers,
        )

        assert response.status_code == 409
        assert response.json()["error"]["message"] == "Matched items do not need resolution"

    @pytest.mark.asyncio
    async def test_unknown_item(self, client: AsyncClient, finance_user, auth_headers):
        response = await client.post(
            f"{BASE}/items/{uuid.uuid4()}/resolve",
            json={"resolution": "accept_bank_amount"},
            headers=auth_headers(finance_user),
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_item_without_parent_record_is_an_internal_error(
        self, client: AsyncClient, db_session, finance_user, auth_headers
    ):
        # SQLite does not enforce foreign keys here, so an orphan can be stored
        orphan = ReconciliationItem(
            reconciliation_id=uuid.uuid4(),
            sequence=1,
            classification=ReconciliationItemStatus.MISSING_IN_ERP,
            status=ReconciliationItemStatus.MISSING_IN_ERP,
            variance_amount=Decimal("10.00"),
        )
        db_session.add(orphan)
        await db_session.commit()

        response = await client.post(
            f"{BASE}/items/{orphan.id}/resolve",
            json={"resolution": "accept_bank_amount"},
            headers=auth_headers(finance_user),
        )

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "INTERNAL_SERVER_ERROR"

    @pytest.mark.asyncio
    async def test_unknown_resolution_code(self, client: AsyncClient, finance_user, auth_headers):
        response = await client.post(
            f"{BASE}/items/{uuid.uuid4()}/resolve",
            json={"resolution": "ignore_it"},
            headers=auth_headers(finance_user),
        )
        assert response.status_code == 400


class TestReporting:

    @pytest.mark.asyncio
    async def test_list_and_filter(self, client: AsyncClient, finance_user, payroll_cycle, payslips, auth_headers):
        headers = auth_headers(finance_user)
        await run(client, headers, payroll_cycle.id, mixed_bank_data())
        await run(client, headers, payroll_cycle.id, clean_bank_data())

        listing = await client.get(BASE, headers=headers)
        assert listing.status_code == 200
        assert listing.json()["meta"]["total"] == 2

        completed = await client.get(BASE, params={"status": "completed"}, headers=headers)
        assert completed.json()["meta"]["total"] == 1
        assert completed.json()["data"][0]["status"] == "completed"

        by_cycle = await client.get(BASE, params={"payroll_cycle_id": str(uuid.uuid4())}, headers=headers)
        assert by_cycle.json()["meta"]["total"] == 0

        by_date = await client.get(BASE, params={"start_date": "2026-04-01"}, headers=headers)
        assert by_date.json()["meta"]["total"] == 0

    @pytest.mark.asyncio
    async def test_stats(self, client: AsyncClient, finance_user, payroll_cycle, payslips, auth_headers):
        headers = auth_headers(finance_user)
        created = (await run(client, headers, payroll_cycle.id, mixed_bank_data())).json()["data"]
        duplicate = next(item for item in created["items"] if item["status"] == "duplicate")
        await client.post(
            f"{BASE}/items/{duplicate['id']}/resolve",
            json={"resolution": "duplicate_reversed"},
            headers=headers,
        )

        response = await client.get(f"{BASE}/stats", headers=headers)

        assert response.status_code == 200
        stats = response.json()["data"]
        assert stats["total_reconciliations"] == 1
        assert stats["by_status"]["in_progress"] == 1
        assert stats["by_status"]["failed"] == 0
        assert stats["items_by_classification"]["duplicate"] == 1
        assert stats["items_by_classification"]["matched"] == 2
        assert stats["items_by_status"]["resolved"] == 1
        assert stats["items_by_status"]["duplicate"] == 0
        assert Decimal(stats["total_discrepancy_amount"]) == Decimal("1125.00")

    @pytest.mark.asyncio
    async def test_stats_without_runs(self, client: AsyncClient, finance_user, auth_headers):
        stats = (await client.get(f"{BASE}/stats", headers=auth_headers(finance_user))).json()["data"]

        assert stats["total_reconciliations"] == 0
        assert set(stats["by_status"]) == {"pending", "in_progress", "completed", "failed"}
        assert "resolved" not in stats["items_by_classification"]
        assert Decimal(stats["total_discrepancy_amount"]) == Decimal("0")

    @pytest.mark.asyncio
    async def test_page_size_defaults_and_bounds(self, client: AsyncClient, finance_user, auth_headers):
        headers = auth_headers(finance_user)

        listing = await client.get(BASE, headers=headers)
        assert listing.json()["meta"]["limit"] == 20

        too_large = await client.get(BASE, params={"limit": 101}, headers=headers)
        assert too_large.status_code == 400

    @pytest.mark.asyncio
    async def test_export_csv(self, client: AsyncClient, finance_user, payroll_cycle, payslips, auth_headers):
        headers = auth_headers(finance_user)
        created = (await run(client, headers, payroll_cycle.id, mixed_bank_data())).json()["data"]

        response = await client.get(f"{BASE}/{created['id']}/export", params={"format": "csv"}, headers=headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment; filename=reconciliation_2026-03-31_" in response.headers["content-disposition"]

        rows = list(csv.DictReader(io.StringIO(response.text)))
        assert len(rows) == 5
        assert rows[0]["sequence"] == "1"
        assert {row["classification"] for row in rows} == {
            "matched", "amount_mismatch", "duplicate", "missing_in_erp",
        }

    @pytest.mark.asyncio
    async def test_export_json(self, client: AsyncClient, finance_user, payroll_cycle, payslips, auth_headers):
        headers = auth_headers(finance_user)
        created = (await run(client, headers, payroll_cycle.id, clean_bank_data())).json()["data"]

        response = await client.get(f"{BASE}/{created['id']}/export", headers=headers)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["reconciliation_id"] == created["id"]
        assert data["status"] == "completed"
        assert data["summary"]["matched_records"] == 3
        assert len(data["items"]) == 3

    @pytest.mark.asyncio
    async def test_export_rejects_unknown_format(
        self, client: AsyncClient, finance_user, payroll_cycle, payslips, auth_headers
    ):
        headers = auth_headers(finance_user)
        created = (await run(client, headers, payroll_cycle.id, clean_bank_data())).json()["data"]

        response = await client.get(f"{BASE}/{created['id']}/export", params={"format": "xlsx"}, headers=headers)

        assert response.status_code == 400


class TestAutoMatch:

    @pytest.mark.asyncio
    async def test_dry_run_stores_nothing(
        self, client: AsyncClient, db_session, finance_user, payroll_cycle, payslips, auth_headers
    ):
        response = await client.post(
            f"{BASE}/auto-match",
            json={"payrollCycleId": str(payroll_cycle.id), "bankData": mixed_bank_data()},
            headers=auth_headers(finance_user),
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "in_progress"
        assert data["counts"]["matched"] == 2
        assert data["counts"]["duplicate"] == 1
        assert data["total_bank_records"] == 5
        assert len(data["items"]) == 5
        assert Decimal(data["total_discrepancy_amount"]) == Decimal("1125.00")

        count = await db_session.scalar(select(func.count()).select_from(Reconciliation))
        assert count == 0

    @pytest.mark.asyncio
    async def test_dry_run_out_of_range_amount(
        self, client: AsyncClient, finance_user, payroll_cycle, payslips, auth_headers
    ):
        response = await client.post(
            f"{BASE}/auto-match",
            json={
                "payrollCycleId": str(payroll_cycle.id),
                "bankData": [{"reference": "UTR1", "amount": "1e27", "valueDate": "2026-03-28"}],
            },
            headers=auth_headers(finance_user),
        )

        assert response.status_code == 400
        assert "out of range" in response.json()["error"]["message"]

    @pytest.mark.asyncio
    async def test_dry_run_malformed_ledger(
        self, client: AsyncClient, finance_user, payroll_cycle, payslips, auth_headers
    ):
        response = await client.post(
            f"{BASE}/auto-match",
            json={
                "payrollCycleId": str(payroll_cycle.id),
                "bankData": [{"reference": "UTR1", "amount": "-1", "valueDate": "2026-03-28"}],
            },
            headers=auth_headers(finance_user),
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
